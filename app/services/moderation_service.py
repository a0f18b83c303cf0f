"""
Moderation reports and moderator decisions.

Report status only moves forward (pending -> reviewed -> resolved, or
-> dismissed); every state change is a compare-and-set on the current status
so concurrent moderators cannot both act on the same report.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Query, Session as DBSession

from app.constants.messaging import (
    AuditAction,
    CONTENT_REMOVAL_ACTIONS,
    ModerationStatus,
    OPEN_REPORT_STATUSES,
    ReportAction,
    ReportReason,
    ReportStatus,
)
from app.core.context import RequestContext
from app.core.errors import (
    AlreadyResolved,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    ReportNotFound,
)
from app.core.locks import KeyedLockRegistry
from app.models.message import Message
from app.models.moderation_report import ModerationReport
from app.services.audit_log_service import AuditLogService
from app.services.message_service import MessageService
from app.utils.time import utcnow

logger = logging.getLogger(__name__)

OPEN_STATUS_VALUES = [s.value for s in OPEN_REPORT_STATUSES]


class ModerationService:
    def __init__(
        self, db: DBSession, thread_locks: Optional[KeyedLockRegistry] = None
    ) -> None:
        self.db = db
        self._audit = AuditLogService(db)
        self._messages = MessageService(db, thread_locks)
        self._locks = self._messages._locks

    def get_report(self, report_id: UUID) -> Optional[ModerationReport]:
        return (
            self.db.query(ModerationReport)
            .filter(ModerationReport.id == report_id)
            .first()
        )

    def get_report_or_raise(self, report_id: UUID) -> ModerationReport:
        report = self.get_report(report_id)
        if report is None:
            raise ReportNotFound(f"Report {report_id} not found", entity_id=report_id)
        return report

    def get_reports_query(
        self,
        status: Optional[ReportStatus] = None,
        message_id: Optional[UUID] = None,
    ) -> Query[ModerationReport]:
        """Reports for the moderation queue, newest first."""
        q = self.db.query(ModerationReport)
        if status is not None:
            q = q.filter(ModerationReport.status == status.value)
        if message_id is not None:
            q = q.filter(ModerationReport.message_id == message_id)
        return q.order_by(ModerationReport.created_at.desc(), ModerationReport.id.desc())

    def create_report(
        self,
        message_id: UUID,
        reason: ReportReason,
        description: str,
        context: RequestContext,
    ) -> ModerationReport:
        """
        File a report as context.user_id, who must be a participant.

        Bumps the message's report count and moves a pending message to
        flagged; approved or already flagged messages keep their status.
        """
        thread_id = self._messages.get_message_or_raise(message_id).thread_id
        reporter_id = context.user_id
        # A sweep purging this thread must not slip a message past a new report
        with self._locks.hold(thread_id):
            try:
                thread = self._messages.lock_thread_row(thread_id)
                if not thread.has_participant(reporter_id):
                    raise ForbiddenError("Only thread participants can report a message")
                message = self._messages.reload_message_or_raise(message_id)
                if message.is_deleted:
                    raise InvalidStateError(
                        f"Message {message_id} is deleted", entity_id=message_id
                    )
                duplicate = (
                    self.db.query(ModerationReport.id)
                    .filter(
                        ModerationReport.message_id == message_id,
                        ModerationReport.reporter_id == reporter_id,
                        ModerationReport.status.in_(OPEN_STATUS_VALUES),
                    )
                    .first()
                )
                if duplicate is not None:
                    raise ConflictError(
                        f"Message {message_id} already has an open report from {reporter_id}",
                        entity_id=duplicate.id,
                    )

                report = ModerationReport(
                    message_id=message.id,
                    thread_id=message.thread_id,
                    reporter_id=reporter_id,
                    reason=ReportReason(reason).value,
                    description=description or "",
                    status=ReportStatus.PENDING.value,
                )
                self.db.add(report)
                self.db.query(Message).filter(Message.id == message.id).update(
                    {Message.report_count: Message.report_count + 1},
                    synchronize_session=False,
                )
                if message.moderation_status == ModerationStatus.PENDING.value:
                    self._messages.transition_moderation_status(
                        message, ModerationStatus.FLAGGED
                    )
                self.db.flush()
                self._audit.record(
                    AuditAction.MESSAGE_REPORTED,
                    context,
                    message.id,
                    {
                        "report_id": str(report.id),
                        "thread_id": str(message.thread_id),
                        "reason": report.reason,
                    },
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        self.db.refresh(report)
        self.db.refresh(message)
        logger.info(
            "Message %s reported by %s (%s)", message.id, reporter_id, report.reason
        )
        return report

    def review_report(self, report_id: UUID, context: RequestContext) -> ModerationReport:
        """pending -> reviewed: a moderator has picked the report up."""
        now = utcnow()
        return self._advance(
            report_id,
            from_statuses=[ReportStatus.PENDING],
            values={
                ModerationReport.status: ReportStatus.REVIEWED.value,
                ModerationReport.moderator_id: context.user_id,
                ModerationReport.reviewed_at: now,
            },
            context=context,
            details={"operation": "review"},
        )

    def resolve_report(
        self, report_id: UUID, action: ReportAction, context: RequestContext
    ) -> ModerationReport:
        """
        Close an open report with an action. Content-removal actions take the
        message to `removed` in the same transaction.
        """
        action = ReportAction(action)
        now = utcnow()

        def apply_action(report: ModerationReport) -> dict:
            details = {"operation": "resolve", "action": action.value}
            if action not in CONTENT_REMOVAL_ACTIONS:
                return details
            message = self._messages.get_message(report.message_id)
            if message is None:
                details["message_missing"] = True
                return details
            if message.moderation_status != ModerationStatus.REMOVED.value:
                if message.moderation_status == ModerationStatus.PENDING.value:
                    self._messages.transition_moderation_status(
                        message, ModerationStatus.FLAGGED
                    )
                self._messages.transition_moderation_status(
                    message, ModerationStatus.REMOVED
                )
            details["message_status"] = ModerationStatus.REMOVED.value
            return details

        return self._advance(
            report_id,
            from_statuses=OPEN_REPORT_STATUSES,
            values={
                ModerationReport.status: ReportStatus.RESOLVED.value,
                ModerationReport.moderator_id: context.user_id,
                ModerationReport.action_taken: action.value,
                ModerationReport.resolved_at: now,
            },
            context=context,
            on_claimed=apply_action,
        )

    def dismiss_report(self, report_id: UUID, context: RequestContext) -> ModerationReport:
        now = utcnow()
        return self._advance(
            report_id,
            from_statuses=OPEN_REPORT_STATUSES,
            values={
                ModerationReport.status: ReportStatus.DISMISSED.value,
                ModerationReport.moderator_id: context.user_id,
                ModerationReport.action_taken: ReportAction.NONE.value,
                ModerationReport.resolved_at: now,
            },
            context=context,
            details={"operation": "dismiss"},
        )

    def review_message(
        self, message_id: UUID, status: ModerationStatus, context: RequestContext
    ) -> Message:
        """Moderator decision on a message outside of a report."""
        message = self._messages.get_message_or_raise(message_id)
        previous = message.moderation_status
        try:
            self._messages.transition_moderation_status(message, ModerationStatus(status))
            self._audit.record(
                AuditAction.MODERATION_ACTION,
                context,
                message.id,
                {
                    "operation": "review_message",
                    "thread_id": str(message.thread_id),
                    "from": previous,
                    "to": ModerationStatus(status).value,
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(message)
        logger.info(
            "Message %s moderated %s -> %s by %s",
            message.id,
            previous,
            message.moderation_status,
            context.user_id,
        )
        return message

    def _advance(
        self,
        report_id: UUID,
        from_statuses: Iterable[ReportStatus],
        values: dict,
        context: RequestContext,
        details: Optional[dict] = None,
        on_claimed=None,
    ) -> ModerationReport:
        report = self.get_report_or_raise(report_id)
        allowed = [s.value for s in from_statuses]
        try:
            claimed = (
                self.db.query(ModerationReport)
                .filter(
                    ModerationReport.id == report_id,
                    ModerationReport.status.in_(allowed),
                )
                .update(values, synchronize_session=False)
            )
            if claimed != 1:
                self.db.rollback()
                self.db.refresh(report)
                if report.status in OPEN_STATUS_VALUES:
                    raise InvalidStateError(
                        f"Report {report_id} is already {report.status}",
                        entity_id=report_id,
                    )
                raise AlreadyResolved(
                    f"Report {report_id} is already {report.status}",
                    entity_id=report_id,
                )
            self.db.refresh(report)
            audit_details = dict(details or {})
            if on_claimed is not None:
                audit_details.update(on_claimed(report))
            audit_details.update(
                {"report_id": str(report.id), "message_id": str(report.message_id)}
            )
            self._audit.record(
                AuditAction.MODERATION_ACTION, context, report.id, audit_details
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(report)
        logger.info(
            "Report %s -> %s by %s", report.id, report.status, context.user_id
        )
        return report
