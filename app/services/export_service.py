"""Thread transcript exports, rendered asynchronously by export_thread_task."""

from __future__ import annotations

from typing import Optional, Protocol
from uuid import UUID

from sqlalchemy.orm import Session as DBSession

from app.adapters.base import BaseExportRenderer, BaseObjectStore
from app.adapters.object_store import FilesystemObjectStore
from app.adapters.transcript_renderer import TextTranscriptRenderer
from app.config import Settings, get_settings
from app.constants.messaging import ExportStatus
from app.core.errors import ExportJobNotFound, ThreadNotFound
from app.infra.logging_config import get_logger
from app.models.export_job import ExportJob
from app.models.thread import Thread
from app.services.message_service import MessageService
from app.utils.time import utcnow

logger = get_logger("export")


class ExportDispatcher(Protocol):
    def dispatch(self, job_id: UUID) -> None: ...


class CeleryExportDispatcher:
    def dispatch(self, job_id: UUID) -> None:
        from app.tasks.export_thread_task import export_thread_task

        export_thread_task.delay(str(job_id))


class ExportService:
    def __init__(
        self,
        db: DBSession,
        renderer: Optional[BaseExportRenderer] = None,
        store: Optional[BaseObjectStore] = None,
        dispatcher: Optional[ExportDispatcher] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self._renderer = renderer or TextTranscriptRenderer()
        self._store = store or FilesystemObjectStore(
            self.settings.export_dir, self.settings.export_base_url
        )
        self._dispatcher = dispatcher or CeleryExportDispatcher()

    def get_job(self, job_id: UUID) -> Optional[ExportJob]:
        return self.db.query(ExportJob).filter(ExportJob.id == job_id).first()

    def get_job_or_raise(self, job_id: UUID) -> ExportJob:
        job = self.get_job(job_id)
        if job is None:
            raise ExportJobNotFound(f"Export job {job_id} not found", entity_id=job_id)
        return job

    def create_job(self, thread_id: UUID, requested_by: str) -> ExportJob:
        """Record a pending export and queue it."""
        if self.db.query(Thread.id).filter(Thread.id == thread_id).first() is None:
            raise ThreadNotFound(f"Thread {thread_id} not found", entity_id=thread_id)
        job = ExportJob(
            thread_id=thread_id,
            requested_by=requested_by,
            status=ExportStatus.PENDING.value,
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        try:
            self._dispatcher.dispatch(job.id)
        except Exception as e:
            logger.exception("Failed to queue export job %s", job.id)
            self._fail(job, f"Could not queue export: {e}")
        return job

    def run(self, job_id: UUID) -> ExportJob:
        """Render the thread's visible messages oldest-first and store the file."""
        job = self.get_job_or_raise(job_id)
        if job.status == ExportStatus.COMPLETED.value:
            return job

        job.status = ExportStatus.PROCESSING.value
        self.db.commit()
        try:
            thread = self.db.query(Thread).filter(Thread.id == job.thread_id).first()
            if thread is None:
                raise ThreadNotFound(
                    f"Thread {job.thread_id} not found", entity_id=job.thread_id
                )
            messages = MessageService(self.db).list_all_visible(thread.id)
            data = self._renderer.render(thread, messages)
            key = f"{thread.id}/{job.id}.{self._renderer.extension}"
            url = self._store.put(key, data, self._renderer.content_type)
        except Exception as e:
            logger.exception("Export job %s failed", job.id)
            self.db.rollback()
            return self._fail(job, str(e))

        job.status = ExportStatus.COMPLETED.value
        job.download_url = url
        job.error = None
        job.completed_at = utcnow()
        self.db.commit()
        self.db.refresh(job)
        logger.info("Export job %s completed (%d messages)", job.id, len(messages))
        return job

    def _fail(self, job: ExportJob, error: str) -> ExportJob:
        job.status = ExportStatus.FAILED.value
        job.error = error[:2000]
        job.completed_at = utcnow()
        self.db.commit()
        self.db.refresh(job)
        return job
