"""Celery beat task enforcing thread retention policies."""

from __future__ import annotations

from typing import Any, Dict

from app.core.app_state import state
from app.db import db_manager
from app.infra.celery_app import celery_app
from app.infra.logging_config import get_logger
from app.services.retention_service import RetentionEnforcer

logger = get_logger("retention_sweep_task")


@celery_app.task(name="app.tasks.retention_sweep_task.retention_sweep_task")
def retention_sweep_task() -> Dict[str, Any]:
    """Run one retention sweep; overlapping runs return skipped=True."""
    with db_manager.db_session() as db:
        result = RetentionEnforcer(db, thread_locks=state.thread_locks).sweep()

    return {
        "skipped": result.skipped,
        "threads_processed": result.threads_processed,
        "threads_deferred": result.threads_deferred,
        "threads_failed": result.threads_failed,
        "messages_archived": result.messages_archived,
        "messages_purged": result.messages_purged,
        "messages_held": result.messages_held,
        "audit_entries_purged": result.audit_entries_purged,
        "failed_thread_ids": [str(t) for t in result.failed_thread_ids],
    }
