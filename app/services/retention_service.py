"""
Retention enforcement.

A sweep walks every thread with a finite retention window. Messages older
than the window are archived (hidden, recoverable); messages older than
window * retention_purge_multiplier are purged for good. A message
referenced by an open moderation report is never purged.

Each thread is processed under its own lock and transaction, so a failure or
lock timeout on one thread leaves it for the next sweep without affecting
the others.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.config import Settings, get_settings
from app.constants.messaging import (
    AuditAction,
    OPEN_REPORT_STATUSES,
    RETENTION_WINDOWS,
    RetentionPolicy,
    normalize_retention_policy,
)
from app.core.context import RequestContext, SYSTEM_CONTEXT
from app.core.errors import OperationTimeout, ValidationError
from app.core.locks import KeyedLockRegistry
from app.infra.logging_config import get_logger
from app.models.attachment import Attachment
from app.models.message import Message, MessageReceipt
from app.models.moderation_report import ModerationReport
from app.models.thread import Thread
from app.services.audit_log_service import AuditLogService
from app.services.message_service import MessageService
from app.utils.sweep_lock import SweepLock, build_sweep_lock
from app.utils.time import utcnow

logger = get_logger("retention")


@dataclass
class ThreadSweepResult:
    thread_id: UUID
    archived: int = 0
    purged: int = 0
    held: int = 0


@dataclass
class SweepResult:
    skipped: bool = False
    threads_processed: int = 0
    threads_deferred: int = 0
    threads_failed: int = 0
    messages_archived: int = 0
    messages_purged: int = 0
    messages_held: int = 0
    audit_entries_purged: int = 0
    failed_thread_ids: List[UUID] = field(default_factory=list)


def _range_details(messages: List[Message], cutoff: datetime) -> dict:
    ordered = sorted(messages, key=lambda m: m.sequence)
    return {
        "count": len(ordered),
        "first_sequence": ordered[0].sequence,
        "last_sequence": ordered[-1].sequence,
        "first_message_id": str(ordered[0].id),
        "last_message_id": str(ordered[-1].id),
        "cutoff": cutoff.isoformat(),
    }


class RetentionEnforcer:
    def __init__(
        self,
        db: DBSession,
        thread_locks: Optional[KeyedLockRegistry] = None,
        sweep_lock: Optional[SweepLock] = None,
        settings: Optional[Settings] = None,
        context: RequestContext = SYSTEM_CONTEXT,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self._messages = MessageService(db, thread_locks)
        self._locks = self._messages._locks
        self._sweep_lock = sweep_lock or build_sweep_lock(self.settings)
        self._audit = AuditLogService(db)
        self._context = context

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """Run one sweep. Returns skipped=True if another sweep is in flight."""
        if not self._sweep_lock.acquire():
            logger.info("Retention sweep already running; skipping")
            return SweepResult(skipped=True)
        try:
            return self._sweep(now or utcnow())
        finally:
            self._sweep_lock.release()

    def _sweep(self, now: datetime) -> SweepResult:
        result = SweepResult()
        threads = (
            self.db.query(Thread.id, Thread.retention_policy)
            .filter(Thread.retention_policy != RetentionPolicy.PERMANENT.value)
            .all()
        )
        for thread_id, policy in threads:
            try:
                outcome = self.sweep_thread(thread_id, RetentionPolicy(policy), now)
            except OperationTimeout:
                logger.info("Thread %s busy; retention deferred to next sweep", thread_id)
                result.threads_deferred += 1
                continue
            except Exception:
                logger.exception("Retention failed for thread %s", thread_id)
                self.db.rollback()
                result.threads_failed += 1
                result.failed_thread_ids.append(thread_id)
                continue
            result.threads_processed += 1
            result.messages_archived += outcome.archived
            result.messages_purged += outcome.purged
            result.messages_held += outcome.held

        if self.settings.audit_retention_days:
            cutoff = now - timedelta(days=self.settings.audit_retention_days)
            try:
                result.audit_entries_purged = self._audit.purge_older_than(cutoff)
            except Exception:
                logger.exception("Audit log purge failed")
                self.db.rollback()

        logger.info(
            "Retention sweep done: %d threads, %d archived, %d purged, %d held, "
            "%d deferred, %d failed",
            result.threads_processed,
            result.messages_archived,
            result.messages_purged,
            result.messages_held,
            result.threads_deferred,
            result.threads_failed,
        )
        return result

    def sweep_thread(
        self, thread_id: UUID, policy: RetentionPolicy, now: datetime
    ) -> ThreadSweepResult:
        """Archive then purge one thread's expired messages in one transaction."""
        outcome = ThreadSweepResult(thread_id=thread_id)
        window = RETENTION_WINDOWS[policy]
        if window is None:
            return outcome
        archive_cutoff = now - window
        purge_cutoff = now - window * self.settings.retention_purge_multiplier

        with self._locks.hold(thread_id):
            try:
                # Holds off receipts and new reports until this thread is done
                self._messages.lock_thread_row(thread_id)
                to_archive = (
                    self.db.query(Message)
                    .populate_existing()
                    .filter(
                        Message.thread_id == thread_id,
                        Message.archived_at.is_(None),
                        Message.created_at < archive_cutoff,
                    )
                    .order_by(Message.sequence.asc())
                    .all()
                )
                if to_archive:
                    self._messages.release_unread(
                        [m for m in to_archive if not m.is_deleted]
                    )
                    for message in to_archive:
                        message.archived_at = now
                    self._audit.record(
                        AuditAction.RETENTION_ARCHIVED,
                        self._context,
                        thread_id,
                        _range_details(to_archive, archive_cutoff),
                    )
                    outcome.archived = len(to_archive)
                    self.db.flush()

                held_ids = self.db.query(ModerationReport.message_id).filter(
                    ModerationReport.thread_id == thread_id,
                    ModerationReport.status.in_([s.value for s in OPEN_REPORT_STATUSES]),
                )
                expired = self.db.query(Message).filter(
                    Message.thread_id == thread_id,
                    Message.archived_at.is_not(None),
                    Message.created_at < purge_cutoff,
                )
                outcome.held = expired.filter(Message.id.in_(held_ids)).count()
                to_purge = (
                    expired.filter(Message.id.not_in(held_ids))
                    .order_by(Message.sequence.asc())
                    .all()
                )
                if to_purge:
                    details = _range_details(to_purge, purge_cutoff)
                    details["held"] = outcome.held
                    self._purge(to_purge)
                    self._audit.record(
                        AuditAction.RETENTION_PURGED, self._context, thread_id, details
                    )
                    outcome.purged = len(to_purge)

                if to_archive or to_purge:
                    self._messages.refresh_last_message_pointer(thread_id)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        if outcome.archived or outcome.purged:
            logger.info(
                "Thread %s: archived %d, purged %d, held %d",
                thread_id,
                outcome.archived,
                outcome.purged,
                outcome.held,
            )
        return outcome

    def _purge(self, messages: List[Message]) -> None:
        ids = [m.id for m in messages]
        self.db.query(MessageReceipt).filter(MessageReceipt.message_id.in_(ids)).delete(
            synchronize_session=False
        )
        self.db.query(Attachment).filter(Attachment.message_id.in_(ids)).delete(
            synchronize_session=False
        )
        self.db.query(Message).filter(Message.id.in_(ids)).delete(
            synchronize_session=False
        )
        for message in messages:
            self.db.expunge(message)

    def restore_archived(
        self,
        thread_id: UUID,
        context: RequestContext,
        retention_policy: Optional[Union[RetentionPolicy, str]] = None,
    ) -> int:
        """
        Undo retention archival for messages not yet purged.

        Without a longer retention_policy the next sweep archives them again.
        """
        policy = None
        if retention_policy is not None:
            try:
                policy = normalize_retention_policy(retention_policy)
            except ValueError as e:
                raise ValidationError(
                    f"Unknown retention policy: {retention_policy!r}"
                ) from e

        with self._locks.hold(thread_id):
            try:
                thread = self._messages.lock_thread_row(thread_id)
                archived = (
                    self.db.query(Message)
                    .filter(
                        Message.thread_id == thread_id,
                        Message.archived_at.is_not(None),
                    )
                    .all()
                )
                for message in archived:
                    message.archived_at = None
                self._messages.reclaim_unread(
                    [m for m in archived if not m.is_deleted]
                )
                if policy is not None:
                    thread.retention_policy = policy.value
                self.db.flush()
                self._messages.refresh_last_message_pointer(thread_id)
                self._audit.record(
                    AuditAction.RETENTION_RESTORED,
                    context,
                    thread_id,
                    {
                        "count": len(archived),
                        "retention_policy": thread.retention_policy,
                    },
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info("Restored %d archived messages in thread %s", len(archived), thread_id)
        return len(archived)
