"""Plain-text transcript renderer for thread exports."""

from __future__ import annotations

from typing import Sequence

from app.adapters.base import BaseExportRenderer
from app.models.message import Message
from app.models.thread import Thread
from app.utils.time import as_utc

REMOVED_PLACEHOLDER = "[removed by moderation]"


class TextTranscriptRenderer(BaseExportRenderer):
    content_type = "text/plain; charset=utf-8"
    extension = "txt"

    def render(self, thread: Thread, messages: Sequence[Message]) -> bytes:
        lines = [
            f"Thread: {thread.subject or '(no subject)'}",
            f"Participants: {', '.join(thread.participant_ids)}",
            f"Messages: {len(messages)}",
            "",
        ]
        for message in messages:
            stamp = as_utc(message.created_at).strftime("%Y-%m-%d %H:%M:%S UTC")
            body = REMOVED_PLACEHOLDER if message.is_removed else message.content
            edited = " (edited)" if message.edited_at else ""
            lines.append(f"[{stamp}] {message.sender_id}{edited}: {body}")
            if not message.is_removed:
                for attachment in message.attachments:
                    url = attachment.cdn_url if attachment.is_clean else None
                    lines.append(
                        f"    attachment: {attachment.name} ({attachment.scan_status})"
                        + (f" {url}" if url else "")
                    )
        return ("\n".join(lines) + "\n").encode("utf-8")
