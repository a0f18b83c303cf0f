"""Pydantic schemas for threads."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.constants.messaging import RetentionPolicy, normalize_retention_policy
from app.schemas.message import MessageRead


class RetentionPolicyMixin(BaseModel):
    retention_policy: RetentionPolicy = RetentionPolicy.PERMANENT

    @field_validator("retention_policy", mode="before")
    @classmethod
    def _normalize_policy(cls, value):
        if isinstance(value, str):
            return normalize_retention_policy(value)
        return value


class ThreadCreate(RetentionPolicyMixin):
    """Explicit thread creation. The caller is added if not already listed."""

    participants: List[str] = Field(default_factory=list)
    subject: str = Field(default="", max_length=256)


class DirectThreadCreate(RetentionPolicyMixin):
    """Get or create the conversation between the caller and one other user."""

    recipient_id: str = Field(..., min_length=1, max_length=64)
    subject: str = Field(default="", max_length=256)


class ThreadMuteUpdate(BaseModel):
    muted: bool


class ThreadArchiveUpdate(BaseModel):
    archived: bool


class ThreadRead(BaseModel):
    """Thread as seen by one participant (unread_count is theirs)."""

    id: UUID
    subject: str
    retention_policy: RetentionPolicy
    participants: List[str]
    created_by: Optional[str] = None
    is_muted: bool
    is_archived: bool
    last_message_id: Optional[UUID] = None
    last_message_at: Optional[datetime] = None
    last_message: Optional[MessageRead] = None
    unread_count: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_thread(
        cls,
        thread,
        unread_count: int = 0,
        last_message=None,
    ) -> "ThreadRead":
        return cls(
            id=thread.id,
            subject=thread.subject,
            retention_policy=thread.retention_policy,
            participants=thread.participant_ids,
            created_by=thread.created_by,
            is_muted=thread.is_muted,
            is_archived=thread.is_archived,
            last_message_id=thread.last_message_id,
            last_message_at=thread.last_message_at,
            last_message=(
                MessageRead.from_message(last_message) if last_message else None
            ),
            unread_count=unread_count,
            created_at=thread.created_at,
            updated_at=thread.updated_at,
        )


class RetentionRestore(BaseModel):
    """Undo retention archival; optionally move the thread to another policy."""

    retention_policy: Optional[RetentionPolicy] = None

    @field_validator("retention_policy", mode="before")
    @classmethod
    def _normalize_policy(cls, value):
        if isinstance(value, str):
            return normalize_retention_policy(value)
        return value


class RetentionRestoreResult(BaseModel):
    thread_id: UUID
    restored: int


class ThreadMarkReadResult(BaseModel):
    thread_id: UUID
    marked: int
    unread_count: int
