"""ExportJob model: asynchronous rendering of a thread transcript."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, Uuid

from app.constants.messaging import ExportStatus
from app.db import Base
from app.models.mixins import TimestampMixin


class ExportJob(Base, TimestampMixin):
    __tablename__ = "export_jobs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    thread_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("threads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requested_by = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default=ExportStatus.PENDING.value)
    download_url = Column(String(1024), nullable=True)
    error = Column(Text, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
