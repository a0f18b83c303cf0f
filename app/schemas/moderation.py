"""Pydantic schemas for moderation reports and audit entries."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.constants.messaging import (
    AuditAction,
    ModerationStatus,
    ReportAction,
    ReportReason,
    ReportStatus,
)


class ReportCreate(BaseModel):
    message_id: UUID
    reason: ReportReason
    description: str = Field(default="", max_length=4000)


class ReportResolve(BaseModel):
    action: ReportAction


class MessageReview(BaseModel):
    """Moderator decision on a message outside of a report."""

    status: ModerationStatus


class ReportRead(BaseModel):
    id: UUID
    message_id: UUID
    thread_id: UUID
    reporter_id: str
    reason: ReportReason
    description: str
    status: ReportStatus
    moderator_id: Optional[str] = None
    action_taken: Optional[ReportAction] = None
    reviewed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AuditLogRead(BaseModel):
    id: UUID
    action: AuditAction
    user_id: str
    target_id: str
    details: Dict[str, Any]
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
