"""Static CDN publisher: derives download and thumbnail URLs from the attachment id."""

from __future__ import annotations

from urllib.parse import quote

from app.adapters.base import BaseCdnPublisher, PublishedUrls
from app.constants.messaging import AttachmentKind
from app.models.attachment import Attachment

THUMBNAIL_KINDS = frozenset({AttachmentKind.IMAGE, AttachmentKind.VIDEO})


class StaticCdnPublisher(BaseCdnPublisher):
    def __init__(self, base_url: str) -> None:
        self._base_url = base_url.rstrip("/")

    def publish(self, attachment: Attachment) -> PublishedUrls:
        key = f"attachments/{attachment.id}/{quote(attachment.name)}"
        thumbnail = None
        if attachment.kind in THUMBNAIL_KINDS:
            thumbnail = f"{self._base_url}/thumbnails/{attachment.id}.jpg"
        return PublishedUrls(cdn_url=f"{self._base_url}/{key}", thumbnail_url=thumbnail)
