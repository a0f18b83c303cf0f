"""
AuditLogEntry model for sensitive actions.

Append-only: rows are inserted alongside the mutation they describe and are
only removed by the optional audit retention purge.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, String, Uuid

from app.db import Base, JSONType
from app.utils.time import utcnow


class AuditLogEntry(Base):
    __tablename__ = "audit_log_entries"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    action = Column(String(32), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    target_id = Column(String(64), nullable=False, index=True)
    details = Column(JSONType, nullable=False, default=dict)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
