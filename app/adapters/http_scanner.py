"""Scanner backed by an external HTTP scanning service."""

from __future__ import annotations

from typing import Optional

import requests

from app.adapters.base import BaseScanner, ScanVerdict
from app.constants.messaging import ScanStatus
from app.core.errors import TransientScanError, UnsupportedAttachmentError
from app.infra.logging_config import get_logger
from app.models.attachment import Attachment

logger = get_logger("http_scanner")

SCAN_PATH = "/scan"


class HttpScanner(BaseScanner):
    """
    POSTs attachment metadata to `{base_url}/scan`.

    Expects `{"status": "clean" | "infected", "detail": "..."}`. Connection
    problems, timeouts and 5xx responses are transient; 415/422 mean the file
    can never be scanned.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: int = 10,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}{SCAN_PATH}"
        self._timeout = timeout_seconds
        self._session = session or requests.Session()

    def scan(self, attachment: Attachment) -> ScanVerdict:
        payload = {
            "attachment_id": str(attachment.id),
            "name": attachment.name,
            "mime_type": attachment.mime_type,
            "size_bytes": attachment.size_bytes,
        }
        try:
            resp = self._session.post(self._url, json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            logger.warning("Scanner unreachable for %s: %s", attachment.id, e)
            raise TransientScanError(str(e), entity_id=attachment.id) from e

        if resp.status_code >= 500 or resp.status_code == 429:
            raise TransientScanError(
                f"Scanner returned HTTP {resp.status_code}", entity_id=attachment.id
            )
        if resp.status_code in (415, 422):
            raise UnsupportedAttachmentError(
                f"Scanner rejected {attachment.mime_type}: HTTP {resp.status_code}",
                entity_id=attachment.id,
            )
        if resp.status_code != 200:
            raise TransientScanError(
                f"HTTP {resp.status_code}: {resp.text[:500] if resp.text else 'no body'}",
                entity_id=attachment.id,
            )

        try:
            data = resp.json()
            status = ScanStatus(data["status"])
        except (ValueError, KeyError, TypeError) as e:
            raise TransientScanError(
                f"Invalid scanner response: {e}", entity_id=attachment.id
            ) from e
        if status not in (ScanStatus.CLEAN, ScanStatus.INFECTED):
            raise TransientScanError(
                f"Unexpected scanner status {status}", entity_id=attachment.id
            )
        return ScanVerdict(status, detail=data.get("detail"))
