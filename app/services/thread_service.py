"""Thread CRUD, direct-thread lookup and flag toggles."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Union
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Query, Session as DBSession

from app.constants.messaging import (
    AuditAction,
    RetentionPolicy,
    normalize_retention_policy,
)
from app.core.context import RequestContext
from app.core.errors import InvalidParticipants, ThreadNotFound, ValidationError
from app.models.thread import Thread, ThreadParticipant, build_participants_key
from app.services.audit_log_service import AuditLogService


def _distinct_in_order(participants: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for p in participants:
        p = (p or "").strip()
        if p and p not in seen:
            seen.add(p)
            ordered.append(p)
    return ordered


class ThreadService:
    def __init__(self, db: DBSession) -> None:
        self.db = db
        self._audit = AuditLogService(db)

    def get_thread(self, thread_id: UUID) -> Optional[Thread]:
        return self.db.query(Thread).filter(Thread.id == thread_id).first()

    def get_thread_or_raise(self, thread_id: UUID) -> Thread:
        thread = self.get_thread(thread_id)
        if thread is None:
            raise ThreadNotFound(f"Thread {thread_id} not found", entity_id=thread_id)
        return thread

    def create_thread(
        self,
        participants: Iterable[str],
        subject: str,
        retention_policy: Union[RetentionPolicy, str],
        context: RequestContext,
    ) -> Thread:
        """
        Create a thread. Participants are de-duplicated preserving order and are
        immutable afterwards. Raises InvalidParticipants for fewer than two.
        """
        members = _distinct_in_order(participants)
        if len(members) < 2:
            raise InvalidParticipants(
                "A thread needs at least two distinct participants"
            )
        try:
            policy = normalize_retention_policy(retention_policy)
        except ValueError as e:
            raise ValidationError(
                f"Unknown retention policy: {retention_policy!r}"
            ) from e

        thread = Thread(
            subject=subject or "",
            retention_policy=policy.value,
            participants_key=build_participants_key(members),
            created_by=context.user_id,
            is_muted=False,
            is_archived=False,
            last_sequence=0,
        )
        thread.participants = [
            ThreadParticipant(user_id=user_id, position=i, unread_count=0)
            for i, user_id in enumerate(members)
        ]
        try:
            self.db.add(thread)
            self.db.flush()
            self._audit.record(
                AuditAction.THREAD_CREATED,
                context,
                thread.id,
                {
                    "participants": members,
                    "subject": thread.subject,
                    "retention_policy": policy.value,
                },
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(thread)
        return thread

    def get_or_create_direct_thread(
        self,
        user_a: str,
        user_b: str,
        subject: str,
        retention_policy: Union[RetentionPolicy, str],
        context: RequestContext,
    ) -> tuple[Thread, bool]:
        """Most recent non-archived thread between exactly these two, or a new one."""
        key = build_participants_key([user_a, user_b])
        existing = (
            self.db.query(Thread)
            .filter(Thread.participants_key == key, Thread.is_archived.is_(False))
            .order_by(Thread.created_at.desc())
            .first()
        )
        if existing is not None:
            return existing, False
        thread = self.create_thread(
            [user_a, user_b], subject, retention_policy, context
        )
        return thread, True

    def get_threads_query(
        self, user_id: str, include_archived: bool = False
    ) -> Query[Thread]:
        """Threads the user participates in, most recent activity first."""
        q = (
            self.db.query(Thread)
            .join(ThreadParticipant, ThreadParticipant.thread_id == Thread.id)
            .filter(ThreadParticipant.user_id == user_id)
        )
        if not include_archived:
            q = q.filter(Thread.is_archived.is_(False))
        return q.order_by(
            func.coalesce(Thread.last_message_at, Thread.created_at).desc(),
            Thread.id.desc(),
        )

    def get_unread_count(self, thread_id: UUID, user_id: str) -> int:
        count = (
            self.db.query(ThreadParticipant.unread_count)
            .filter(
                ThreadParticipant.thread_id == thread_id,
                ThreadParticipant.user_id == user_id,
            )
            .scalar()
        )
        return int(count or 0)

    def get_unread_counts(
        self, thread_ids: List[UUID], user_id: str
    ) -> Dict[UUID, int]:
        if not thread_ids:
            return {}
        rows = (
            self.db.query(ThreadParticipant.thread_id, ThreadParticipant.unread_count)
            .filter(
                ThreadParticipant.thread_id.in_(thread_ids),
                ThreadParticipant.user_id == user_id,
            )
            .all()
        )
        return {thread_id: int(count) for thread_id, count in rows}

    def mute_thread(
        self, thread_id: UUID, muted: bool, context: RequestContext
    ) -> Thread:
        thread = self.get_thread_or_raise(thread_id)
        try:
            thread.is_muted = muted
            self._audit.record(
                AuditAction.USER_MUTED, context, thread.id, {"muted": muted}
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(thread)
        return thread

    def archive_thread(
        self, thread_id: UUID, archived: bool, context: RequestContext
    ) -> Thread:
        """Toggle the archived flag. Messages are untouched; archived threads stay readable."""
        thread = self.get_thread_or_raise(thread_id)
        try:
            thread.is_archived = archived
            self._audit.record(
                AuditAction.THREAD_ARCHIVED, context, thread.id, {"archived": archived}
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(thread)
        return thread
