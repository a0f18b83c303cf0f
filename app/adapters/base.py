"""
Collaborator interfaces for the attachment pipeline and exports.

Adapters encapsulate the external systems (malware scanner, CDN, object
storage) and expose a small normalized contract to the messaging core.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

from app.constants.messaging import ScanStatus

if TYPE_CHECKING:
    from app.models.attachment import Attachment
    from app.models.message import Message
    from app.models.thread import Thread


@dataclass(frozen=True)
class ScanVerdict:
    """Outcome of one scan: clean or infected. Errors are raised, not returned."""

    status: ScanStatus
    detail: Optional[str] = None

    @property
    def is_clean(self) -> bool:
        return self.status == ScanStatus.CLEAN


@dataclass(frozen=True)
class PublishedUrls:
    cdn_url: str
    thumbnail_url: Optional[str] = None


class BaseScanner(ABC):
    """Contract for safety scanners."""

    @abstractmethod
    def scan(self, attachment: "Attachment") -> ScanVerdict:
        """
        Return a verdict for the attachment.

        Raise TransientScanError when the scan may succeed on retry and
        UnsupportedAttachmentError when it never will.
        """
        ...


class BaseCdnPublisher(ABC):
    """Contract for making clean attachments downloadable."""

    @abstractmethod
    def publish(self, attachment: "Attachment") -> PublishedUrls:
        ...


class BaseObjectStore(ABC):
    """Contract for storing rendered exports."""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store data under key and return a download URL."""
        ...


class BaseExportRenderer(ABC):
    """Contract for turning a thread transcript into a file."""

    content_type: str = "application/octet-stream"
    extension: str = "bin"

    @abstractmethod
    def render(self, thread: "Thread", messages: Sequence["Message"]) -> bytes:
        ...
