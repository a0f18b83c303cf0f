"""Celery application for attachment scanning, exports and the retention sweep."""

from __future__ import annotations

from celery import Celery

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "parley",
    broker=settings.broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.tasks.scan_attachment_task",
        "app.tasks.retention_sweep_task",
        "app.tasks.export_thread_task",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_always_eager=settings.is_test,
    beat_schedule={
        "retention-sweep": {
            "task": "app.tasks.retention_sweep_task.retention_sweep_task",
            "schedule": float(settings.retention_sweep_interval_seconds),
        },
    },
)
