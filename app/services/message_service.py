"""
Message store: the single write path for thread ordering and unread counters.

send_message assigns (sequence, created_at) under the per-thread lock and
commits the message, the counter increments, the thread's last-message
pointer and the audit entry in one transaction. Unread counters are only
touched through in-database arithmetic.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import timedelta
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from app.constants.messaging import (
    AuditAction,
    MODERATION_TRANSITIONS,
    ModerationStatus,
)
from app.core.context import RequestContext
from app.core.errors import (
    ForbiddenError,
    IllegalModerationTransition,
    InvalidStateError,
    MessageNotFound,
    ThreadArchived,
    ThreadNotFound,
    ValidationError,
)
from app.core.locks import KeyedLockRegistry
from app.models.message import Message, MessageReceipt
from app.models.thread import Thread, ThreadParticipant
from app.services.audit_log_service import AuditLogService
from app.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class MessageService:
    def __init__(
        self, db: DBSession, thread_locks: Optional[KeyedLockRegistry] = None
    ) -> None:
        self.db = db
        if thread_locks is None:
            from app.core.app_state import state

            thread_locks = state.thread_locks
        self._locks = thread_locks
        self._audit = AuditLogService(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_message(self, message_id: UUID) -> Optional[Message]:
        return self.db.query(Message).filter(Message.id == message_id).first()

    def get_message_or_raise(self, message_id: UUID) -> Message:
        message = self.get_message(message_id)
        if message is None:
            raise MessageNotFound(
                f"Message {message_id} not found", entity_id=message_id
            )
        return message

    def _visible(self, query, include_archived: bool = False):
        query = query.filter(Message.is_deleted.is_(False))
        if not include_archived:
            query = query.filter(Message.archived_at.is_(None))
        return query

    def list_messages(
        self,
        thread_id: UUID,
        limit: int = DEFAULT_PAGE_SIZE,
        before: Optional[int] = None,
        include_archived: bool = False,
    ) -> Tuple[List[Message], Optional[int]]:
        """
        Newest-first page of visible messages.

        `before` is the sequence cursor returned by the previous page, which
        stays correct while new messages are being appended.
        """
        if self.db.query(Thread.id).filter(Thread.id == thread_id).first() is None:
            raise ThreadNotFound(f"Thread {thread_id} not found", entity_id=thread_id)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        q = self._visible(
            self.db.query(Message).filter(Message.thread_id == thread_id),
            include_archived,
        )
        if before is not None:
            q = q.filter(Message.sequence < before)
        rows = q.order_by(Message.sequence.desc()).limit(limit + 1).all()
        items = rows[:limit]
        next_cursor = items[-1].sequence if len(rows) > limit else None
        return items, next_cursor

    def list_all_visible(self, thread_id: UUID) -> List[Message]:
        """Oldest-first transcript of visible messages (exports)."""
        return (
            self._visible(self.db.query(Message).filter(Message.thread_id == thread_id))
            .order_by(Message.sequence.asc())
            .all()
        )

    def get_latest_visible(self, thread_id: UUID) -> Optional[Message]:
        return (
            self._visible(self.db.query(Message).filter(Message.thread_id == thread_id))
            .order_by(Message.sequence.desc())
            .first()
        )

    def search_messages(
        self,
        user_id: str,
        query: str,
        thread_id: Optional[UUID] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> Tuple[List[Message], int]:
        """Case-insensitive substring search over the user's visible, non-removed messages."""
        term = (query or "").strip()
        if not term:
            raise ValidationError("Search query must not be empty")
        q = (
            self.db.query(Message)
            .join(
                ThreadParticipant,
                ThreadParticipant.thread_id == Message.thread_id,
            )
            .filter(
                ThreadParticipant.user_id == user_id,
                Message.moderation_status != ModerationStatus.REMOVED.value,
                Message.content.ilike(f"%{_escape_like(term)}%", escape="\\"),
            )
        )
        q = self._visible(q)
        if thread_id is not None:
            q = q.filter(Message.thread_id == thread_id)
        total = q.count()
        rows = (
            q.order_by(Message.created_at.desc(), Message.id.desc())
            .limit(max(1, min(limit, MAX_PAGE_SIZE)))
            .all()
        )
        return rows, total

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def send_message(
        self,
        thread_id: UUID,
        content: str,
        context: RequestContext,
        attachment_count: int = 0,
    ) -> Message:
        """
        Append a message to the thread as context.user_id.

        Raises ThreadNotFound, ThreadArchived, ForbiddenError (non-participant),
        ValidationError (nothing to send) or OperationTimeout (lock wait).
        """
        sender_id = context.user_id
        content = content or ""
        if not content.strip() and attachment_count == 0:
            raise ValidationError("A message needs content or at least one attachment")

        with self._locks.hold(thread_id):
            try:
                thread = self.lock_thread_row(thread_id)
                if thread.is_archived:
                    raise ThreadArchived(
                        f"Thread {thread_id} is archived", entity_id=thread_id
                    )
                if not thread.has_participant(sender_id):
                    raise ForbiddenError(
                        f"{sender_id} is not a participant of thread {thread_id}"
                    )

                created_at = utcnow()
                latest = as_utc(
                    self.db.query(func.max(Message.created_at))
                    .filter(Message.thread_id == thread_id)
                    .scalar()
                )
                if latest is not None and created_at <= latest:
                    created_at = latest + timedelta(microseconds=1)
                sequence = int(thread.last_sequence or 0) + 1

                message = Message(
                    thread_id=thread_id,
                    sender_id=sender_id,
                    content=content,
                    sequence=sequence,
                    created_at=created_at,
                    moderation_status=ModerationStatus.PENDING.value,
                    report_count=0,
                    is_deleted=False,
                )
                self.db.add(message)
                self.db.flush()

                self.db.query(ThreadParticipant).filter(
                    ThreadParticipant.thread_id == thread_id,
                    ThreadParticipant.user_id != sender_id,
                ).update(
                    {ThreadParticipant.unread_count: ThreadParticipant.unread_count + 1},
                    synchronize_session=False,
                )
                thread.last_sequence = sequence
                thread.last_message_id = message.id
                thread.last_message_at = created_at

                self._audit.record(
                    AuditAction.MESSAGE_SENT,
                    context,
                    message.id,
                    {
                        "thread_id": str(thread_id),
                        "sequence": sequence,
                        "attachment_count": attachment_count,
                    },
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            "Message %s sent to thread %s (seq=%d) by %s",
            message.id,
            thread_id,
            sequence,
            sender_id,
        )
        self.db.refresh(message)
        return message

    def mark_read(self, message_id: UUID, reader_id: str) -> Message:
        """
        Record (reader_id, now) once. Repeat and concurrent calls for the same
        reader collapse to a single receipt and a single counter decrement.
        """
        thread_id = self.get_message_or_raise(message_id).thread_id
        with self._locks.hold(thread_id):
            try:
                thread = self.lock_thread_row(thread_id)
                if not thread.has_participant(reader_id):
                    raise ForbiddenError(
                        f"{reader_id} is not a participant of thread {thread_id}"
                    )
                # Retention may have archived or purged it while we waited
                message = self.reload_message_or_raise(message_id)
                if self._has_receipt(message_id, reader_id):
                    self.db.commit()
                    return message

                self.db.add(MessageReceipt(message_id=message_id, reader_id=reader_id))
                try:
                    self.db.flush()
                except IntegrityError:
                    # Another request recorded the same receipt first
                    self.db.rollback()
                    return self.get_message_or_raise(message_id)

                if (
                    reader_id != message.sender_id
                    and not message.is_deleted
                    and message.archived_at is None
                ):
                    self._decrement_unread(thread_id, {reader_id: 1})
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        self.db.refresh(message)
        return message

    def mark_thread_read(self, thread_id: UUID, reader_id: str) -> int:
        """Mark every visible message read for reader_id and zero their counter."""
        with self._locks.hold(thread_id):
            try:
                thread = self.lock_thread_row(thread_id)
                if not thread.has_participant(reader_id):
                    raise ForbiddenError(
                        f"{reader_id} is not a participant of thread {thread_id}"
                    )
                already_read = (
                    self.db.query(MessageReceipt.message_id)
                    .join(Message, Message.id == MessageReceipt.message_id)
                    .filter(
                        Message.thread_id == thread_id,
                        MessageReceipt.reader_id == reader_id,
                    )
                )
                unread = (
                    self._visible(
                        self.db.query(Message).filter(Message.thread_id == thread_id)
                    )
                    .filter(
                        Message.sender_id != reader_id,
                        Message.id.not_in(already_read),
                    )
                    .all()
                )
                now = utcnow()
                for message in unread:
                    self.db.add(
                        MessageReceipt(
                            message_id=message.id, reader_id=reader_id, read_at=now
                        )
                    )
                self.db.query(ThreadParticipant).filter(
                    ThreadParticipant.thread_id == thread_id,
                    ThreadParticipant.user_id == reader_id,
                ).update({ThreadParticipant.unread_count: 0}, synchronize_session=False)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        return len(unread)

    def edit_message(
        self, message_id: UUID, new_content: str, context: RequestContext
    ) -> Message:
        """Replace content. Only the sender may edit; moderation status is kept."""
        message = self.get_message_or_raise(message_id)
        if message.sender_id != context.user_id:
            raise ForbiddenError("Only the sender can edit a message")
        if message.is_deleted or message.is_removed:
            raise InvalidStateError(
                f"Message {message_id} can no longer be edited", entity_id=message_id
            )
        if not (new_content or "").strip():
            raise ValidationError("Edited content must not be empty")

        previous = message.content
        try:
            message.content = new_content
            message.edited_at = utcnow()
            self._audit.record(
                AuditAction.MESSAGE_EDITED,
                context,
                message.id,
                {"thread_id": str(message.thread_id), "previous_content": previous},
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(message)
        return message

    def delete_message(self, message_id: UUID, context: RequestContext) -> Message:
        """Soft delete by the sender. The row stays for audit until purged."""
        message = self.get_message_or_raise(message_id)
        if message.sender_id != context.user_id:
            raise ForbiddenError("Only the sender can delete a message")
        if message.is_deleted:
            return message

        thread_id = message.thread_id
        with self._locks.hold(thread_id):
            try:
                self.lock_thread_row(thread_id)
                message = self.reload_message_or_raise(message_id)
                if message.is_deleted:
                    self.db.commit()
                    return message
                now = utcnow()
                if message.archived_at is None:
                    self.release_unread([message])
                message.is_deleted = True
                message.deleted_at = now
                self.db.flush()
                self.refresh_last_message_pointer(thread_id)
                self._audit.record(
                    AuditAction.MESSAGE_DELETED,
                    context,
                    message.id,
                    {"thread_id": str(thread_id), "sequence": message.sequence},
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        self.db.refresh(message)
        return message

    # ------------------------------------------------------------------
    # Helpers shared with moderation and retention (no commit)
    # ------------------------------------------------------------------

    def transition_moderation_status(
        self, message: Message, new_status: ModerationStatus
    ) -> None:
        """Apply a legal moderation transition; anything else is IllegalModerationTransition."""
        current = ModerationStatus(message.moderation_status)
        if new_status not in MODERATION_TRANSITIONS[current]:
            raise IllegalModerationTransition(
                f"Cannot move message {message.id} from {current.value} to {new_status.value}",
                entity_id=message.id,
            )
        # Compare-and-set so two moderators can't both apply a transition
        updated = (
            self.db.query(Message)
            .filter(
                Message.id == message.id,
                Message.moderation_status == current.value,
            )
            .update({Message.moderation_status: new_status.value})
        )
        if updated != 1:
            raise IllegalModerationTransition(
                f"Message {message.id} changed moderation status concurrently",
                entity_id=message.id,
            )

    def release_unread(self, messages: Iterable[Message]) -> None:
        """
        Messages are leaving the visible set (delete, archive, purge): take them
        off the counters of participants who never read them.
        """
        for thread_id, counts in self._unread_by_thread(messages).items():
            self._decrement_unread(thread_id, counts)

    def reclaim_unread(self, messages: Iterable[Message]) -> None:
        """Inverse of release_unread, for messages restored from archive."""
        for thread_id, counts in self._unread_by_thread(messages).items():
            for user_id, n in counts.items():
                self.db.query(ThreadParticipant).filter(
                    ThreadParticipant.thread_id == thread_id,
                    ThreadParticipant.user_id == user_id,
                ).update(
                    {ThreadParticipant.unread_count: ThreadParticipant.unread_count + n},
                    synchronize_session=False,
                )

    def _unread_by_thread(self, messages: Iterable[Message]) -> dict[UUID, Counter]:
        messages = list(messages)
        if not messages:
            return {}
        # Receipts are re-read here; the loaded collections may predate a commit
        readers_of: dict[UUID, set[str]] = {}
        receipts = self.db.query(MessageReceipt.message_id, MessageReceipt.reader_id).filter(
            MessageReceipt.message_id.in_([m.id for m in messages])
        )
        for message_id, reader_id in receipts:
            readers_of.setdefault(message_id, set()).add(reader_id)

        per_thread: dict[UUID, Counter] = {}
        for message in messages:
            readers = readers_of.get(message.id, set())
            counts = per_thread.setdefault(message.thread_id, Counter())
            for participant in message.thread.participants:
                user_id = participant.user_id
                if user_id != message.sender_id and user_id not in readers:
                    counts[user_id] += 1
        return per_thread

    def _decrement_unread(self, thread_id: UUID, counts: dict[str, int]) -> None:
        for user_id, n in counts.items():
            if n <= 0:
                continue
            self.db.query(ThreadParticipant).filter(
                ThreadParticipant.thread_id == thread_id,
                ThreadParticipant.user_id == user_id,
            ).update(
                {
                    ThreadParticipant.unread_count: case(
                        (
                            ThreadParticipant.unread_count > n,
                            ThreadParticipant.unread_count - n,
                        ),
                        else_=0,
                    )
                },
                synchronize_session=False,
            )

    def lock_thread_row(self, thread_id: UUID) -> Thread:
        """
        SELECT ... FOR UPDATE the thread row. Together with the in-process
        thread lock this serializes writers across API and worker processes.
        """
        thread = (
            self.db.query(Thread)
            .populate_existing()
            .with_for_update()
            .filter(Thread.id == thread_id)
            .first()
        )
        if thread is None:
            raise ThreadNotFound(f"Thread {thread_id} not found", entity_id=thread_id)
        return thread

    def reload_message_or_raise(self, message_id: UUID) -> Message:
        message = (
            self.db.query(Message)
            .populate_existing()
            .filter(Message.id == message_id)
            .first()
        )
        if message is None:
            raise MessageNotFound(
                f"Message {message_id} not found", entity_id=message_id
            )
        return message

    def refresh_last_message_pointer(self, thread_id: UUID) -> None:
        """Point the thread at its newest visible message (or nothing)."""
        thread = self.db.query(Thread).filter(Thread.id == thread_id).first()
        if thread is None:
            return
        latest = self.get_latest_visible(thread_id)
        thread.last_message_id = latest.id if latest else None
        thread.last_message_at = latest.created_at if latest else None

    def _has_receipt(self, message_id: UUID, reader_id: str) -> bool:
        return (
            self.db.query(MessageReceipt.id)
            .filter(
                MessageReceipt.message_id == message_id,
                MessageReceipt.reader_id == reader_id,
            )
            .first()
            is not None
        )
