"""
Attachment pipeline: ingest, asynchronous safety scan, publish.

Ingest records a pending attachment and hands its id to a ScanDispatcher;
the scan itself runs in a worker (process_scan). Terminal states are final:
a failed attachment can only be re-ingested as a new attachment.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Protocol
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.adapters.base import BaseCdnPublisher, BaseScanner
from app.adapters.cdn import StaticCdnPublisher
from app.adapters.http_scanner import HttpScanner
from app.adapters.policy_scanner import PolicyScanner
from app.config import Settings, get_settings
from app.constants.messaging import EventType, ScanStatus, attachment_kind_for
from app.core.context import RequestContext
from app.core.errors import (
    AttachmentNotFound,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    MessageNotFound,
    TransientScanError,
    UnsupportedAttachmentError,
    ValidationError,
)
from app.core.events import EventBus, ThreadEvent
from app.models.attachment import Attachment
from app.models.message import Message
from app.schemas.message import AttachmentCreate
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


class ScanDispatcher(Protocol):
    def dispatch(self, attachment_id: UUID) -> None: ...


class CeleryScanDispatcher:
    """Queues scan_attachment_task for each ingested attachment."""

    def dispatch(self, attachment_id: UUID) -> None:
        from app.tasks.scan_attachment_task import scan_attachment_task

        scan_attachment_task.delay(str(attachment_id))


def build_scanner(settings: Settings) -> BaseScanner:
    if settings.scanner_url:
        return HttpScanner(settings.scanner_url, settings.scanner_timeout_seconds)
    return PolicyScanner()


class AttachmentService:
    def __init__(
        self,
        db: DBSession,
        scanner: Optional[BaseScanner] = None,
        publisher: Optional[BaseCdnPublisher] = None,
        dispatcher: Optional[ScanDispatcher] = None,
        events: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self._scanner = scanner or build_scanner(self.settings)
        self._publisher = publisher or StaticCdnPublisher(self.settings.cdn_base_url)
        self._dispatcher = dispatcher or CeleryScanDispatcher()
        self._events = events

    def get_attachment(self, attachment_id: UUID) -> Optional[Attachment]:
        return (
            self.db.query(Attachment).filter(Attachment.id == attachment_id).first()
        )

    def get_attachment_or_raise(self, attachment_id: UUID) -> Attachment:
        attachment = self.get_attachment(attachment_id)
        if attachment is None:
            raise AttachmentNotFound(
                f"Attachment {attachment_id} not found", entity_id=attachment_id
            )
        return attachment

    def list_for_message(self, message_id: UUID) -> List[Attachment]:
        """Every attachment of the message with its recorded scan state."""
        if self.db.query(Message.id).filter(Message.id == message_id).first() is None:
            raise MessageNotFound(
                f"Message {message_id} not found", entity_id=message_id
            )
        return (
            self.db.query(Attachment)
            .filter(Attachment.message_id == message_id)
            .order_by(Attachment.created_at.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def validate(self, data: AttachmentCreate) -> None:
        if not data.name.strip():
            raise ValidationError("Attachment name must not be empty")
        if data.size_bytes < 0 or data.size_bytes > self.settings.attachment_max_size_bytes:
            raise ValidationError(
                f"Attachment size must be between 0 and "
                f"{self.settings.attachment_max_size_bytes} bytes"
            )

    def ingest(
        self, message_id: UUID, data: AttachmentCreate, context: RequestContext
    ) -> Attachment:
        """Record a pending attachment and queue its scan. Returns before scanning."""
        return self.ingest_many(message_id, [data], context)[0]

    def ingest_many(
        self,
        message_id: UUID,
        items: Iterable[AttachmentCreate],
        context: RequestContext,
    ) -> List[Attachment]:
        items = list(items)
        for data in items:
            self.validate(data)
        message = self.db.query(Message).filter(Message.id == message_id).first()
        if message is None:
            raise MessageNotFound(
                f"Message {message_id} not found", entity_id=message_id
            )
        if message.sender_id != context.user_id:
            raise ForbiddenError("Only the sender can attach files to a message")
        if message.is_deleted:
            raise InvalidStateError(
                f"Message {message_id} is deleted", entity_id=message_id
            )

        attachments = [
            Attachment(
                message=message,
                name=data.name.strip(),
                mime_type=data.mime_type,
                kind=attachment_kind_for(data.mime_type).value,
                size_bytes=data.size_bytes,
                scan_status=ScanStatus.PENDING.value,
                scan_attempts=0,
                reingest_count=0,
            )
            for data in items
        ]
        try:
            self.db.add_all(attachments)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        for attachment in attachments:
            self.db.refresh(attachment)
            self._dispatch(attachment)
        return attachments

    def reingest(self, attachment_id: UUID, context: RequestContext) -> Attachment:
        """
        Retry a permanently failed attachment as a new pending attachment.

        Only the sender may do this, only from `error`, and at most
        attachment_max_reingest times per original upload.
        """
        failed = (
            self.db.query(Attachment)
            .populate_existing()
            .with_for_update()
            .filter(Attachment.id == attachment_id)
            .first()
        )
        if failed is None:
            raise AttachmentNotFound(
                f"Attachment {attachment_id} not found", entity_id=attachment_id
            )
        try:
            if failed.message.sender_id != context.user_id:
                raise ForbiddenError("Only the sender can re-ingest an attachment")
            if failed.scan_status != ScanStatus.ERROR.value:
                raise InvalidStateError(
                    f"Attachment {attachment_id} is {failed.scan_status}; only failed "
                    "attachments can be re-ingested",
                    entity_id=attachment_id,
                )
            successor = (
                self.db.query(Attachment.id)
                .filter(Attachment.supersedes_id == failed.id)
                .first()
            )
            if successor is not None:
                raise ConflictError(
                    f"Attachment {attachment_id} was already re-ingested as {successor.id}",
                    entity_id=attachment_id,
                )
            if failed.reingest_count >= self.settings.attachment_max_reingest:
                raise InvalidStateError(
                    f"Attachment {attachment_id} is a permanent failure",
                    entity_id=attachment_id,
                )
            retry = Attachment(
                message=failed.message,
                name=failed.name,
                mime_type=failed.mime_type,
                kind=failed.kind,
                size_bytes=failed.size_bytes,
                scan_status=ScanStatus.PENDING.value,
                scan_attempts=0,
                reingest_count=failed.reingest_count + 1,
                supersedes_id=failed.id,
            )
            self.db.add(retry)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(retry)
        logger.info(
            "Attachment %s re-ingested as %s (attempt %d)",
            failed.id,
            retry.id,
            retry.reingest_count,
        )
        self._dispatch(retry)
        return retry

    def _dispatch(self, attachment: Attachment) -> None:
        try:
            self._dispatcher.dispatch(attachment.id)
        except Exception:
            # The row is committed as pending; it can be re-dispatched later
            logger.exception("Failed to queue scan for attachment %s", attachment.id)

    # ------------------------------------------------------------------
    # Scan (worker side)
    # ------------------------------------------------------------------

    def process_scan(self, attachment_id: UUID) -> Attachment:
        """
        Run one scan attempt.

        No-op for attachments already in a terminal state. Raises
        TransientScanError when the caller should retry later; the final
        allowed attempt records `error` instead of raising.
        """
        attachment = (
            self.db.query(Attachment)
            .populate_existing()
            .with_for_update()
            .filter(Attachment.id == attachment_id)
            .first()
        )
        if attachment is None:
            raise AttachmentNotFound(
                f"Attachment {attachment_id} not found", entity_id=attachment_id
            )
        if attachment.is_terminal:
            self.db.rollback()
            return attachment

        attachment.scan_attempts = (attachment.scan_attempts or 0) + 1
        try:
            verdict = self._scanner.scan(attachment)
            if verdict.is_clean:
                urls = self._publisher.publish(attachment)
                attachment.cdn_url = urls.cdn_url
                attachment.thumbnail_url = urls.thumbnail_url
        except TransientScanError as e:
            return self._failed_attempt(attachment, e)
        except UnsupportedAttachmentError as e:
            return self._finish(attachment, ScanStatus.ERROR, str(e))
        except Exception as e:
            # Publisher and CDN failures spend the same attempt budget
            logger.exception(
                "Unexpected failure scanning attachment %s", attachment.id
            )
            attachment.cdn_url = None
            attachment.thumbnail_url = None
            return self._failed_attempt(
                attachment, TransientScanError(str(e), entity_id=attachment.id), e
            )

        if verdict.is_clean:
            return self._finish(attachment, ScanStatus.CLEAN, None)
        return self._finish(attachment, ScanStatus.INFECTED, verdict.detail)

    def _failed_attempt(
        self,
        attachment: Attachment,
        error: TransientScanError,
        cause: Optional[BaseException] = None,
    ) -> Attachment:
        """Record `error` once attempts are spent, otherwise raise for a retry."""
        if attachment.scan_attempts >= self.settings.attachment_scan_max_attempts:
            logger.warning(
                "Attachment %s failed after %d attempts: %s",
                attachment.id,
                attachment.scan_attempts,
                error,
            )
            return self._finish(attachment, ScanStatus.ERROR, str(error))
        attachment.scan_error = str(error)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        if cause is None:
            raise error
        raise error from cause

    def _finish(
        self, attachment: Attachment, status: ScanStatus, error: Optional[str]
    ) -> Attachment:
        attachment.scan_status = status.value
        attachment.scan_error = error
        attachment.scanned_at = utcnow()
        if status != ScanStatus.CLEAN:
            attachment.cdn_url = None
            attachment.thumbnail_url = None
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(attachment)
        logger.info(
            "Attachment %s scanned: %s (attempts=%d)",
            attachment.id,
            status.value,
            attachment.scan_attempts,
        )
        if self._events is not None:
            self._events.publish(
                ThreadEvent(
                    type=EventType.ATTACHMENT_SCANNED,
                    thread_id=attachment.message.thread_id,
                    payload={
                        "attachment_id": str(attachment.id),
                        "message_id": str(attachment.message_id),
                        "scan_status": status.value,
                    },
                )
            )
        return attachment
