"""Celery task rendering a thread export."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from app.core.errors import ExportJobNotFound
from app.db import db_manager
from app.infra.celery_app import celery_app
from app.infra.logging_config import get_logger
from app.services.export_service import ExportService

logger = get_logger("export_thread_task")


@celery_app.task(name="app.tasks.export_thread_task.export_thread_task")
def export_thread_task(job_id_str: str) -> Optional[str]:
    try:
        job_id = UUID(job_id_str)
    except ValueError:
        logger.warning("Invalid export job id: %s", job_id_str)
        return None

    with db_manager.db_session() as db:
        try:
            job = ExportService(db).run(job_id)
        except ExportJobNotFound:
            logger.warning("Export job %s no longer exists", job_id)
            return None
        return job.status
