"""Thread model: one conversation between a fixed, ordered set of participants."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.constants.messaging import RetentionPolicy
from app.db import Base
from app.models.mixins import TimestampMixin


def build_participants_key(participants: list[str]) -> str:
    """Order-independent key for looking up the thread between a participant set."""
    return ",".join(sorted(set(participants)))


class Thread(Base, TimestampMixin):
    """
    Conversation bucket. Participants never change after creation.

    last_sequence, last_message_id and last_message_at are only advanced by
    MessageService.send_message while holding the thread lock.
    """

    __tablename__ = "threads"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subject = Column(String(256), nullable=False, default="")
    retention_policy = Column(
        String(16), nullable=False, default=RetentionPolicy.PERMANENT.value
    )
    participants_key = Column(String(2048), nullable=False, index=True)
    created_by = Column(String(64), nullable=True)
    is_muted = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    last_message_id = Column(Uuid(as_uuid=True), nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_sequence = Column(Integer, nullable=False, default=0)

    participants = relationship(
        "ThreadParticipant",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="ThreadParticipant.position",
        lazy="selectin",
    )
    messages = relationship(
        "Message",
        back_populates="thread",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Message.sequence",
    )

    @property
    def participant_ids(self) -> list[str]:
        return [p.user_id for p in self.participants]

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participant_ids


class ThreadParticipant(Base):
    """Membership row carrying the per-(thread, participant) unread counter."""

    __tablename__ = "thread_participants"

    __table_args__ = (
        UniqueConstraint("thread_id", "user_id", name="uq_thread_participants_user"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    thread_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("threads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(64), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    # Only ever changed with an in-database increment/decrement
    unread_count = Column(Integer, nullable=False, default=0)

    thread = relationship("Thread", back_populates="participants")
