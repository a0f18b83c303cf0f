"""Attachment model: file metadata plus the safety-scan state machine."""

from __future__ import annotations

import uuid

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from app.constants.messaging import ScanStatus, TERMINAL_SCAN_STATUSES
from app.db import Base
from app.models.mixins import TimestampMixin


class Attachment(Base, TimestampMixin):
    """
    File attached to a message. Bytes live in object storage; we keep URLs only.

    scan_status moves pending -> clean | infected | error exactly once.
    """

    __tablename__ = "attachments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(512), nullable=False)
    mime_type = Column(String(255), nullable=False)
    kind = Column(String(16), nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    scan_status = Column(
        String(16), nullable=False, default=ScanStatus.PENDING.value, index=True
    )
    scan_attempts = Column(Integer, nullable=False, default=0)
    scan_error = Column(Text, nullable=True)
    scanned_at = Column(DateTime(timezone=True), nullable=True)
    cdn_url = Column(String(1024), nullable=True)
    thumbnail_url = Column(String(1024), nullable=True)
    reingest_count = Column(Integer, nullable=False, default=0)
    supersedes_id = Column(Uuid(as_uuid=True), nullable=True)

    message = relationship("Message", back_populates="attachments")

    @property
    def is_terminal(self) -> bool:
        return self.scan_status in TERMINAL_SCAN_STATUSES

    @property
    def is_clean(self) -> bool:
        return self.scan_status == ScanStatus.CLEAN.value
