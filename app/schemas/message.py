"""Pydantic schemas for messages, read receipts and attachments."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.constants.messaging import AttachmentKind, ModerationStatus, ScanStatus

# -----------------------------------------------------------------------------
# Attachment schemas
# -----------------------------------------------------------------------------


class AttachmentCreate(BaseModel):
    """Declared file metadata. The bytes go to object storage out of band."""

    name: str = Field(..., min_length=1, max_length=512)
    mime_type: str = Field(..., min_length=1, max_length=255)
    size_bytes: int = Field(..., ge=0)


class AttachmentRead(BaseModel):
    id: UUID
    message_id: UUID
    name: str
    mime_type: str
    kind: AttachmentKind
    size_bytes: int
    scan_status: ScanStatus
    scan_attempts: int
    scan_error: Optional[str] = None
    scanned_at: Optional[datetime] = None
    cdn_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    reingest_count: int = 0
    supersedes_id: Optional[UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AttachmentIngest(AttachmentCreate):
    """Attach a file to an already-sent message."""

    message_id: UUID


# -----------------------------------------------------------------------------
# Message schemas
# -----------------------------------------------------------------------------


class MessageCreate(BaseModel):
    content: str = Field(default="", max_length=20000)
    attachments: List[AttachmentCreate] = Field(default_factory=list)


class MessageUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=20000)


class ReadReceiptRead(BaseModel):
    reader_id: str
    read_at: datetime

    model_config = {"from_attributes": True}


class MessageRead(BaseModel):
    """
    Message for API responses.

    Removed messages keep their record but never expose content or files;
    deleted messages never expose their files again.
    """

    id: UUID
    thread_id: UUID
    sender_id: str
    content: Optional[str] = None
    sequence: int
    created_at: datetime
    edited_at: Optional[datetime] = None
    is_deleted: bool = False
    moderation_status: ModerationStatus
    report_count: int = 0
    read_by: List[ReadReceiptRead] = Field(default_factory=list)
    attachments: List[AttachmentRead] = Field(default_factory=list)

    model_config = {"from_attributes": True}

    @classmethod
    def from_message(cls, message) -> "MessageRead":
        removed = message.moderation_status == ModerationStatus.REMOVED.value
        hide_files = removed or message.is_deleted
        return cls(
            id=message.id,
            thread_id=message.thread_id,
            sender_id=message.sender_id,
            content=None if removed else message.content,
            sequence=message.sequence,
            created_at=message.created_at,
            edited_at=message.edited_at,
            is_deleted=message.is_deleted,
            moderation_status=message.moderation_status,
            report_count=message.report_count,
            read_by=[ReadReceiptRead.model_validate(r) for r in message.receipts],
            attachments=(
                []
                if hide_files
                else [AttachmentRead.model_validate(a) for a in message.attachments]
            ),
        )


class MessagePage(BaseModel):
    """Newest-first page; pass next_cursor as `before` to continue."""

    items: List[MessageRead]
    next_cursor: Optional[int] = None
    has_more: bool = False


class MessageSearchResult(BaseModel):
    results: List[MessageRead]
    total: int
    query: str
