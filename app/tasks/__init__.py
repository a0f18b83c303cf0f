# Import celery app first
from app.infra.celery_app import celery_app

# Initialize logging configuration for Celery workers
from app.infra.logging_config import LoggingConfig
from app.tasks.export_thread_task import export_thread_task
from app.tasks.retention_sweep_task import retention_sweep_task
from app.tasks.scan_attachment_task import scan_attachment_task

LoggingConfig()  # Initialize logging

__all__ = [
    "celery_app",
    "export_thread_task",
    "retention_sweep_task",
    "scan_attachment_task",
]
