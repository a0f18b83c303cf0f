"""ModerationReport model. Compliance record: rows are never deleted."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Index, String, Text, Uuid

from app.constants.messaging import ReportStatus
from app.db import Base
from app.models.mixins import TimestampMixin


class ModerationReport(Base, TimestampMixin):
    """
    Report against a message.

    message_id/thread_id are weak references (no FK): purging a message keeps
    its reports.
    """

    __tablename__ = "moderation_reports"

    __table_args__ = (
        Index("ix_moderation_reports_message_status", "message_id", "status"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id = Column(Uuid(as_uuid=True), nullable=False)
    thread_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    reporter_id = Column(String(64), nullable=False)
    reason = Column(String(32), nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(
        String(16), nullable=False, default=ReportStatus.PENDING.value, index=True
    )
    moderator_id = Column(String(64), nullable=True)
    action_taken = Column(String(16), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
