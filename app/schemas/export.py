"""Pydantic schemas for thread exports."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from app.constants.messaging import ExportStatus


class ExportCreate(BaseModel):
    thread_id: UUID


class ExportJobRead(BaseModel):
    id: UUID
    thread_id: UUID
    requested_by: str
    status: ExportStatus
    download_url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
