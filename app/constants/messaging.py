"""Enumerations and fixed policy tables for threads, messages and moderation."""

from datetime import timedelta
from enum import StrEnum
from typing import Dict, FrozenSet, Optional


class RetentionPolicy(StrEnum):
    """Named retention windows a thread can be assigned."""

    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"
    NINETY_DAYS = "90d"
    ONE_YEAR = "1y"
    PERMANENT = "permanent"


RETENTION_WINDOWS: Dict[RetentionPolicy, Optional[timedelta]] = {
    RetentionPolicy.SEVEN_DAYS: timedelta(days=7),
    RetentionPolicy.THIRTY_DAYS: timedelta(days=30),
    RetentionPolicy.NINETY_DAYS: timedelta(days=90),
    RetentionPolicy.ONE_YEAR: timedelta(days=365),
    RetentionPolicy.PERMANENT: None,
}

# Long-form names used by older clients
RETENTION_ALIASES: Dict[str, RetentionPolicy] = {
    "7days": RetentionPolicy.SEVEN_DAYS,
    "30days": RetentionPolicy.THIRTY_DAYS,
    "90days": RetentionPolicy.NINETY_DAYS,
    "1year": RetentionPolicy.ONE_YEAR,
}


def normalize_retention_policy(value: str) -> RetentionPolicy:
    """Accept canonical or long-form policy names. Raises ValueError otherwise."""
    key = str(value).strip().lower()
    if key in RETENTION_ALIASES:
        return RETENTION_ALIASES[key]
    return RetentionPolicy(key)


class ModerationStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    FLAGGED = "flagged"
    REMOVED = "removed"


MODERATION_TRANSITIONS: Dict[ModerationStatus, FrozenSet[ModerationStatus]] = {
    ModerationStatus.PENDING: frozenset(
        {ModerationStatus.APPROVED, ModerationStatus.FLAGGED}
    ),
    ModerationStatus.FLAGGED: frozenset({ModerationStatus.REMOVED}),
    ModerationStatus.APPROVED: frozenset(),
    ModerationStatus.REMOVED: frozenset(),
}


class ScanStatus(StrEnum):
    PENDING = "pending"
    CLEAN = "clean"
    INFECTED = "infected"
    ERROR = "error"


TERMINAL_SCAN_STATUSES = frozenset(
    {ScanStatus.CLEAN, ScanStatus.INFECTED, ScanStatus.ERROR}
)


class AttachmentKind(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    PDF = "pdf"
    DOCUMENT = "document"


def attachment_kind_for(mime_type: str) -> AttachmentKind:
    """Classify a MIME type the way clients render attachment chips."""
    mime = (mime_type or "").lower()
    if mime.startswith("image/"):
        return AttachmentKind.IMAGE
    if mime.startswith("video/"):
        return AttachmentKind.VIDEO
    if mime == "application/pdf":
        return AttachmentKind.PDF
    return AttachmentKind.DOCUMENT


class ReportReason(StrEnum):
    SPAM = "spam"
    INAPPROPRIATE = "inappropriate"
    HARASSMENT = "harassment"
    OTHER = "other"


class ReportStatus(StrEnum):
    PENDING = "pending"
    REVIEWED = "reviewed"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


OPEN_REPORT_STATUSES = frozenset({ReportStatus.PENDING, ReportStatus.REVIEWED})


class ReportAction(StrEnum):
    WARNED = "warned"
    SUSPENDED = "suspended"
    BANNED = "banned"
    REMOVED = "removed"
    NONE = "none"


CONTENT_REMOVAL_ACTIONS = frozenset(
    {ReportAction.REMOVED, ReportAction.SUSPENDED, ReportAction.BANNED}
)


class AuditAction(StrEnum):
    MESSAGE_SENT = "message_sent"
    MESSAGE_EDITED = "message_edited"
    MESSAGE_DELETED = "message_deleted"
    MESSAGE_REPORTED = "message_reported"
    THREAD_CREATED = "thread_created"
    THREAD_ARCHIVED = "thread_archived"
    USER_MUTED = "user_muted"
    MODERATION_ACTION = "moderation_action"
    RETENTION_ARCHIVED = "retention_archived"
    RETENTION_PURGED = "retention_purged"
    RETENTION_RESTORED = "retention_restored"


class ExportStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EventType(StrEnum):
    THREAD_UPDATED = "thread_updated"
    MESSAGE_DELIVERED = "message_delivered"
    TYPING_CHANGED = "typing_changed"
    ATTACHMENT_SCANNED = "attachment_scanned"
