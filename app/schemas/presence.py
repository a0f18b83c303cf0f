"""Pydantic schemas for typing indicators and thread events."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List
from uuid import UUID

from pydantic import BaseModel


class TypingUpdate(BaseModel):
    thread_id: UUID
    is_typing: bool


class TypingRead(BaseModel):
    thread_id: UUID
    user_ids: List[str]


class EventRead(BaseModel):
    type: str
    thread_id: UUID
    payload: Dict[str, Any]
    occurred_at: datetime


class EventPoll(BaseModel):
    events: List[EventRead]
