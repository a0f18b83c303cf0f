"""Message model and per-reader read receipts."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.constants.messaging import ModerationStatus
from app.db import Base
from app.models.mixins import SoftDeleteMixin
from app.utils.time import utcnow


class Message(Base, SoftDeleteMixin):
    """
    One message in a thread. (thread_id, sequence) is the total order.

    Soft-deleted and retention-archived rows stay in the table until purge so
    reports and audit entries can still point at them.
    """

    __tablename__ = "messages"

    __table_args__ = (
        UniqueConstraint("thread_id", "sequence", name="uq_messages_thread_sequence"),
        Index("ix_messages_thread_created", "thread_id", "created_at"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    thread_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("threads.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id = Column(String(64), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    sequence = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)
    moderation_status = Column(
        String(16), nullable=False, default=ModerationStatus.PENDING.value
    )
    report_count = Column(Integer, nullable=False, default=0)

    thread = relationship("Thread", back_populates="messages")
    receipts = relationship(
        "MessageReceipt",
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    attachments = relationship(
        "Attachment",
        back_populates="message",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Attachment.created_at",
        lazy="selectin",
    )

    @property
    def is_removed(self) -> bool:
        return self.moderation_status == ModerationStatus.REMOVED.value

    @property
    def read_by(self) -> list[str]:
        return [r.reader_id for r in self.receipts]


class MessageReceipt(Base):
    """(reader, timestamp) pair; at most one per reader and message."""

    __tablename__ = "message_reads"

    __table_args__ = (
        UniqueConstraint("message_id", "reader_id", name="uq_message_reads_reader"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reader_id = Column(String(64), nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    message = relationship("Message", back_populates="receipts")
