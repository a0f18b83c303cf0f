"""Default scanner: MIME-type policy checks with no external service."""

from __future__ import annotations

from app.adapters.base import BaseScanner, ScanVerdict
from app.constants.messaging import ScanStatus
from app.core.errors import UnsupportedAttachmentError
from app.models.attachment import Attachment

BLOCKED_MIME_TYPES = frozenset(
    {
        "application/x-msdownload",
        "application/x-msdos-program",
        "application/x-executable",
        "application/x-sh",
        "application/x-bat",
        "application/vnd.microsoft.portable-executable",
        "application/exe",
    }
)

BLOCKED_EXTENSIONS = (".exe", ".bat", ".cmd", ".scr", ".msi", ".com", ".js", ".vbs")

ALLOWED_MIME_PREFIXES = ("image/", "video/", "audio/", "text/")

ALLOWED_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/zip",
        "application/json",
        "application/rtf",
    }
)


class PolicyScanner(BaseScanner):
    """Executables are infected; types outside the allow-list cannot be scanned."""

    def scan(self, attachment: Attachment) -> ScanVerdict:
        mime = (attachment.mime_type or "").lower().split(";")[0].strip()
        name = (attachment.name or "").lower()
        if mime in BLOCKED_MIME_TYPES or name.endswith(BLOCKED_EXTENSIONS):
            return ScanVerdict(ScanStatus.INFECTED, detail=f"blocked type {mime or name}")
        if mime in ALLOWED_MIME_TYPES or mime.startswith(ALLOWED_MIME_PREFIXES):
            return ScanVerdict(ScanStatus.CLEAN)
        raise UnsupportedAttachmentError(
            f"Unsupported attachment type: {attachment.mime_type}",
            entity_id=attachment.id,
        )
