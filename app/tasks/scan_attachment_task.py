"""Celery task running the safety scan for one attachment."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from app.config import get_settings
from app.core.app_state import state
from app.core.errors import AttachmentNotFound, TransientScanError
from app.db import db_manager
from app.infra.celery_app import celery_app
from app.infra.logging_config import get_logger
from app.services.attachment_service import AttachmentService

logger = get_logger("scan_attachment_task")


def retry_countdown(base_seconds: int, retries: int) -> int:
    """Exponential backoff: base, 2*base, 4*base, ..."""
    return base_seconds * (2**retries)


@celery_app.task(
    bind=True,
    name="app.tasks.scan_attachment_task.scan_attachment_task",
    acks_late=True,
)
def scan_attachment_task(self, attachment_id_str: str) -> Optional[str]:
    """
    Scan one attachment. Re-running it for a terminal attachment is a no-op.

    Transient scanner failures are retried with exponential backoff; the
    service records `error` itself once the attempt budget is spent.
    """
    try:
        attachment_id = UUID(attachment_id_str)
    except ValueError:
        logger.warning("Invalid attachment id for scan: %s", attachment_id_str)
        return None

    settings = get_settings()
    with db_manager.db_session() as db:
        service = AttachmentService(db, events=state.events, settings=settings)
        try:
            attachment = service.process_scan(attachment_id)
        except AttachmentNotFound:
            # Purged along with its message before the scan ran
            logger.info("Attachment %s no longer exists; dropping scan", attachment_id)
            return None
        except TransientScanError as e:
            countdown = retry_countdown(
                settings.attachment_scan_backoff_seconds, self.request.retries
            )
            logger.info(
                "Scan of %s failed transiently (%s); retrying in %ds",
                attachment_id,
                e,
                countdown,
            )
            raise self.retry(
                exc=e,
                countdown=countdown,
                max_retries=settings.attachment_scan_max_attempts,
            )
        return attachment.scan_status
