"""
ConversationGateway: the one surface routers and external callers use.

Each operation resolves the thread its resource belongs to, asks the
Authorizer whether the caller may perform the action there, and only then
delegates to the store, presence tracker, attachment pipeline, moderation
or export services. Events are published after the owning transaction has
committed.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Set, Tuple
from uuid import UUID

from sqlalchemy.orm import Query, Session as DBSession

from app.adapters.base import BaseCdnPublisher, BaseScanner
from app.config import Settings, get_settings
from app.constants.actions import Action
from app.constants.messaging import (
    AuditAction,
    EventType,
    ModerationStatus,
    ReportAction,
    ReportStatus,
)
from app.core.app_state import AppState, state as default_state
from app.core.authorization import Authorizer, ParticipantAuthorizer
from app.core.context import RequestContext
from app.core.errors import AttachmentNotFound, ThreadNotFound, Unauthorized
from app.core.events import ThreadEvent
from app.models.attachment import Attachment
from app.models.audit_log_entry import AuditLogEntry
from app.models.export_job import ExportJob
from app.models.message import Message
from app.models.moderation_report import ModerationReport
from app.models.thread import Thread
from app.schemas.message import AttachmentIngest, MessageCreate, MessagePage, MessageRead
from app.schemas.moderation import ReportCreate
from app.schemas.thread import DirectThreadCreate, ThreadCreate, ThreadRead
from app.services.attachment_service import AttachmentService, ScanDispatcher
from app.services.audit_log_service import AuditLogService
from app.services.export_service import ExportDispatcher, ExportService
from app.services.message_service import MessageService
from app.services.moderation_service import ModerationService
from app.services.retention_service import RetentionEnforcer
from app.services.thread_service import ThreadService

logger = logging.getLogger(__name__)


class ConversationGateway:
    def __init__(
        self,
        db: DBSession,
        authorizer: Optional[Authorizer] = None,
        app_state: Optional[AppState] = None,
        scan_dispatcher: Optional[ScanDispatcher] = None,
        export_dispatcher: Optional[ExportDispatcher] = None,
        scanner: Optional[BaseScanner] = None,
        publisher: Optional[BaseCdnPublisher] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.state = app_state or default_state
        self.authorizer = authorizer or ParticipantAuthorizer(
            db, self.settings.moderators
        )
        self.threads = ThreadService(db)
        self.messages = MessageService(db, self.state.thread_locks)
        self.attachments = AttachmentService(
            db,
            scanner=scanner,
            publisher=publisher,
            dispatcher=scan_dispatcher,
            events=self.state.events,
            settings=self.settings,
        )
        self.moderation = ModerationService(db, self.state.thread_locks)
        self.audit = AuditLogService(db)
        self.exports = ExportService(
            db, dispatcher=export_dispatcher, settings=self.settings
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _authorize(
        self, context: RequestContext, action: Action, resource_id: Optional[UUID]
    ) -> None:
        if not self.authorizer.authorize(context.user, action, resource_id):
            logger.info(
                "Denied %s on %s for %s", action.value, resource_id, context.user_id
            )
            raise Unauthorized(
                f"{context.user_id} may not {action.value}", entity_id=resource_id
            )

    def _require_thread(self, thread_id: UUID) -> UUID:
        if self.db.query(Thread.id).filter(Thread.id == thread_id).first() is None:
            raise ThreadNotFound(f"Thread {thread_id} not found", entity_id=thread_id)
        return thread_id

    def _publish(
        self, event_type: EventType, thread_id: UUID, **payload: object
    ) -> None:
        self.state.events.publish(
            ThreadEvent(type=event_type, thread_id=thread_id, payload=payload)
        )

    def thread_view(self, thread: Thread, user_id: str) -> ThreadRead:
        last = (
            self.messages.get_message(thread.last_message_id)
            if thread.last_message_id
            else None
        )
        return ThreadRead.from_thread(
            thread,
            unread_count=self.threads.get_unread_count(thread.id, user_id),
            last_message=last,
        )

    def thread_views(self, threads: List[Thread], user_id: str) -> List[ThreadRead]:
        counts = self.threads.get_unread_counts([t.id for t in threads], user_id)
        views = []
        for thread in threads:
            last = (
                self.messages.get_message(thread.last_message_id)
                if thread.last_message_id
                else None
            )
            views.append(
                ThreadRead.from_thread(
                    thread, unread_count=counts.get(thread.id, 0), last_message=last
                )
            )
        return views

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    def create_thread(self, context: RequestContext, data: ThreadCreate) -> Thread:
        """Create a thread; the caller is always one of its participants."""
        self._authorize(context, Action.THREAD_CREATE, None)
        participants = list(data.participants)
        if context.user_id not in participants:
            participants.insert(0, context.user_id)
        thread = self.threads.create_thread(
            participants, data.subject, data.retention_policy, context
        )
        self._publish(EventType.THREAD_UPDATED, thread.id, change="created")
        return thread

    def start_direct_thread(
        self, context: RequestContext, data: DirectThreadCreate
    ) -> Tuple[Thread, bool]:
        self._authorize(context, Action.THREAD_CREATE, None)
        thread, created = self.threads.get_or_create_direct_thread(
            context.user_id,
            data.recipient_id,
            data.subject,
            data.retention_policy,
            context,
        )
        if created:
            self._publish(EventType.THREAD_UPDATED, thread.id, change="created")
        return thread, created

    def get_thread(self, context: RequestContext, thread_id: UUID) -> Thread:
        self._require_thread(thread_id)
        self._authorize(context, Action.THREAD_READ, thread_id)
        return self.threads.get_thread_or_raise(thread_id)

    def threads_query(
        self, context: RequestContext, include_archived: bool = False
    ) -> Query[Thread]:
        """The caller's threads, most recent activity first (for pagination)."""
        self._authorize(context, Action.THREAD_READ, None)
        return self.threads.get_threads_query(context.user_id, include_archived)

    def mute_thread(
        self, context: RequestContext, thread_id: UUID, muted: bool
    ) -> Thread:
        self._require_thread(thread_id)
        self._authorize(context, Action.THREAD_UPDATE, thread_id)
        thread = self.threads.mute_thread(thread_id, muted, context)
        self._publish(EventType.THREAD_UPDATED, thread_id, change="muted", muted=muted)
        return thread

    def archive_thread(
        self, context: RequestContext, thread_id: UUID, archived: bool
    ) -> Thread:
        self._require_thread(thread_id)
        self._authorize(context, Action.THREAD_UPDATE, thread_id)
        thread = self.threads.archive_thread(thread_id, archived, context)
        self._publish(
            EventType.THREAD_UPDATED, thread_id, change="archived", archived=archived
        )
        return thread

    def restore_archived(
        self,
        context: RequestContext,
        thread_id: UUID,
        retention_policy: Optional[str] = None,
    ) -> int:
        self._require_thread(thread_id)
        self._authorize(context, Action.RETENTION_RESTORE, thread_id)
        enforcer = RetentionEnforcer(
            self.db, thread_locks=self.state.thread_locks, settings=self.settings
        )
        restored = enforcer.restore_archived(thread_id, context, retention_policy)
        self._publish(
            EventType.THREAD_UPDATED, thread_id, change="restored", count=restored
        )
        return restored

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_message(
        self, context: RequestContext, thread_id: UUID, data: MessageCreate
    ) -> Message:
        """
        Commit the message in the store, then ingest its attachments.

        Attachment metadata is validated up front so a bad file never leaves
        a committed message behind; scans run asynchronously after ingest.
        """
        self._require_thread(thread_id)
        self._authorize(context, Action.MESSAGE_SEND, thread_id)
        for item in data.attachments:
            self.attachments.validate(item)

        message = self.messages.send_message(
            thread_id, data.content, context, attachment_count=len(data.attachments)
        )
        if data.attachments:
            self.attachments.ingest_many(message.id, data.attachments, context)
            self.db.refresh(message)

        self._publish(
            EventType.MESSAGE_DELIVERED,
            thread_id,
            message_id=str(message.id),
            sender_id=message.sender_id,
            sequence=message.sequence,
        )
        self._publish(
            EventType.THREAD_UPDATED,
            thread_id,
            change="message",
            last_message_id=str(message.id),
        )
        return message

    def list_messages(
        self,
        context: RequestContext,
        thread_id: UUID,
        limit: int = 50,
        before: Optional[int] = None,
    ) -> MessagePage:
        self._require_thread(thread_id)
        self._authorize(context, Action.MESSAGE_READ, thread_id)
        items, next_cursor = self.messages.list_messages(thread_id, limit, before)
        return MessagePage(
            items=[MessageRead.from_message(m) for m in items],
            next_cursor=next_cursor,
            has_more=next_cursor is not None,
        )

    def get_message(self, context: RequestContext, message_id: UUID) -> Message:
        message = self.messages.get_message_or_raise(message_id)
        self._authorize(context, Action.MESSAGE_READ, message.thread_id)
        return message

    def mark_read(self, context: RequestContext, message_id: UUID) -> Message:
        message = self.messages.get_message_or_raise(message_id)
        self._authorize(context, Action.MESSAGE_READ, message.thread_id)
        message = self.messages.mark_read(message_id, context.user_id)
        self._publish(
            EventType.THREAD_UPDATED,
            message.thread_id,
            change="read",
            message_id=str(message.id),
            reader_id=context.user_id,
        )
        return message

    def mark_thread_read(self, context: RequestContext, thread_id: UUID) -> int:
        self._require_thread(thread_id)
        self._authorize(context, Action.MESSAGE_READ, thread_id)
        marked = self.messages.mark_thread_read(thread_id, context.user_id)
        if marked:
            self._publish(
                EventType.THREAD_UPDATED,
                thread_id,
                change="read",
                reader_id=context.user_id,
                count=marked,
            )
        return marked

    def edit_message(
        self, context: RequestContext, message_id: UUID, content: str
    ) -> Message:
        message = self.messages.get_message_or_raise(message_id)
        self._authorize(context, Action.MESSAGE_UPDATE, message.thread_id)
        message = self.messages.edit_message(message_id, content, context)
        self._publish(
            EventType.THREAD_UPDATED,
            message.thread_id,
            change="edited",
            message_id=str(message.id),
        )
        return message

    def delete_message(self, context: RequestContext, message_id: UUID) -> Message:
        message = self.messages.get_message_or_raise(message_id)
        self._authorize(context, Action.MESSAGE_DELETE, message.thread_id)
        message = self.messages.delete_message(message_id, context)
        self._publish(
            EventType.THREAD_UPDATED,
            message.thread_id,
            change="deleted",
            message_id=str(message.id),
        )
        return message

    def search_messages(
        self,
        context: RequestContext,
        query: str,
        thread_id: Optional[UUID] = None,
        limit: int = 50,
    ) -> Tuple[List[Message], int]:
        if thread_id is not None:
            self._require_thread(thread_id)
        self._authorize(context, Action.MESSAGE_SEARCH, thread_id)
        return self.messages.search_messages(context.user_id, query, thread_id, limit)

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def set_typing(
        self, context: RequestContext, thread_id: UUID, is_typing: bool
    ) -> None:
        self._require_thread(thread_id)
        self._authorize(context, Action.TYPING_UPDATE, thread_id)
        self.state.presence.set_typing(context.user_id, thread_id, is_typing)
        self._publish(
            EventType.TYPING_CHANGED,
            thread_id,
            user_id=context.user_id,
            is_typing=is_typing,
        )

    def list_typing(self, context: RequestContext, thread_id: UUID) -> Set[str]:
        self._require_thread(thread_id)
        self._authorize(context, Action.TYPING_READ, thread_id)
        return self.state.presence.list_typing(thread_id, context.user_id)

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def ingest_attachment(
        self, context: RequestContext, data: AttachmentIngest
    ) -> Attachment:
        message = self.messages.get_message_or_raise(data.message_id)
        self._authorize(context, Action.ATTACHMENT_CREATE, message.thread_id)
        return self.attachments.ingest(message.id, data, context)

    def _visible_attachment(self, attachment_id: UUID) -> Attachment:
        # Files of a deleted message stay on record for audit only
        attachment = self.attachments.get_attachment_or_raise(attachment_id)
        if attachment.message.is_deleted:
            raise AttachmentNotFound(
                f"Attachment {attachment_id} not found", entity_id=attachment_id
            )
        return attachment

    def get_attachment(self, context: RequestContext, attachment_id: UUID) -> Attachment:
        attachment = self._visible_attachment(attachment_id)
        self._authorize(context, Action.ATTACHMENT_READ, attachment.message.thread_id)
        return attachment

    def list_attachments(
        self, context: RequestContext, message_id: UUID
    ) -> List[Attachment]:
        message = self.messages.get_message_or_raise(message_id)
        self._authorize(context, Action.ATTACHMENT_READ, message.thread_id)
        if message.is_deleted:
            return []
        return self.attachments.list_for_message(message_id)

    def reingest_attachment(
        self, context: RequestContext, attachment_id: UUID
    ) -> Attachment:
        attachment = self._visible_attachment(attachment_id)
        self._authorize(context, Action.ATTACHMENT_CREATE, attachment.message.thread_id)
        return self.attachments.reingest(attachment_id, context)

    # ------------------------------------------------------------------
    # Moderation & audit
    # ------------------------------------------------------------------

    def report_message(
        self, context: RequestContext, data: ReportCreate
    ) -> ModerationReport:
        message = self.messages.get_message_or_raise(data.message_id)
        self._authorize(context, Action.MESSAGE_REPORT, message.thread_id)
        return self.moderation.create_report(
            data.message_id, data.reason, data.description, context
        )

    def reports_query(
        self,
        context: RequestContext,
        status: Optional[ReportStatus] = None,
        message_id: Optional[UUID] = None,
    ) -> Query[ModerationReport]:
        self._authorize(context, Action.MODERATION_READ, None)
        return self.moderation.get_reports_query(status=status, message_id=message_id)

    def get_report(self, context: RequestContext, report_id: UUID) -> ModerationReport:
        self._authorize(context, Action.MODERATION_READ, None)
        return self.moderation.get_report_or_raise(report_id)

    def review_report(
        self, context: RequestContext, report_id: UUID
    ) -> ModerationReport:
        self._authorize(context, Action.MODERATION_UPDATE, None)
        return self.moderation.review_report(report_id, context)

    def resolve_report(
        self, context: RequestContext, report_id: UUID, action: ReportAction
    ) -> ModerationReport:
        self._authorize(context, Action.MODERATION_UPDATE, None)
        report = self.moderation.resolve_report(report_id, action, context)
        self._publish(
            EventType.THREAD_UPDATED,
            report.thread_id,
            change="moderated",
            message_id=str(report.message_id),
            action=report.action_taken,
        )
        return report

    def dismiss_report(
        self, context: RequestContext, report_id: UUID
    ) -> ModerationReport:
        self._authorize(context, Action.MODERATION_UPDATE, None)
        return self.moderation.dismiss_report(report_id, context)

    def review_message(
        self, context: RequestContext, message_id: UUID, status: ModerationStatus
    ) -> Message:
        self._authorize(context, Action.MODERATION_UPDATE, None)
        message = self.moderation.review_message(message_id, status, context)
        self._publish(
            EventType.THREAD_UPDATED,
            message.thread_id,
            change="moderated",
            message_id=str(message.id),
            moderation_status=message.moderation_status,
        )
        return message

    def audit_entries_query(
        self,
        context: RequestContext,
        action: Optional[AuditAction] = None,
        user_id: Optional[str] = None,
        target_id: Optional[str] = None,
    ) -> Query[AuditLogEntry]:
        self._authorize(context, Action.AUDIT_READ, None)
        return self.audit.get_entries_query(
            action=action, user_id=user_id, target_id=target_id
        )

    # ------------------------------------------------------------------
    # Exports & events
    # ------------------------------------------------------------------

    def export_thread(self, context: RequestContext, thread_id: UUID) -> ExportJob:
        self._require_thread(thread_id)
        self._authorize(context, Action.THREAD_EXPORT, thread_id)
        return self.exports.create_job(thread_id, context.user_id)

    def get_export_job(self, context: RequestContext, job_id: UUID) -> ExportJob:
        job = self.exports.get_job_or_raise(job_id)
        self._authorize(context, Action.THREAD_EXPORT, job.thread_id)
        return job

    def poll_events(
        self, context: RequestContext, thread_id: UUID, timeout: float = 0.0
    ) -> List[ThreadEvent]:
        """Long poll: wait up to timeout for the thread's next events."""
        self._require_thread(thread_id)
        self._authorize(context, Action.THREAD_READ, thread_id)
        with self.state.events.subscribe(thread_id) as subscription:
            return subscription.drain(timeout=timeout)
