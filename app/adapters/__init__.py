"""Adapters for scanning, publishing and storing attachments and exports."""

from app.adapters.base import (
    BaseCdnPublisher,
    BaseExportRenderer,
    BaseObjectStore,
    BaseScanner,
    PublishedUrls,
    ScanVerdict,
)
from app.adapters.cdn import StaticCdnPublisher
from app.adapters.http_scanner import HttpScanner
from app.adapters.object_store import FilesystemObjectStore
from app.adapters.policy_scanner import PolicyScanner
from app.adapters.transcript_renderer import TextTranscriptRenderer

__all__ = [
    "BaseCdnPublisher",
    "BaseExportRenderer",
    "BaseObjectStore",
    "BaseScanner",
    "FilesystemObjectStore",
    "HttpScanner",
    "PolicyScanner",
    "PublishedUrls",
    "ScanVerdict",
    "StaticCdnPublisher",
    "TextTranscriptRenderer",
]
