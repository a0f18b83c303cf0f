"""Tests for the Celery tasks (executed eagerly in the test environment)."""

from uuid import uuid4

from app.constants.messaging import EventType, ExportStatus, ScanStatus
from app.core.app_state import state
from app.models.attachment import Attachment
from app.models.export_job import ExportJob
from app.tasks.export_thread_task import export_thread_task
from app.tasks.retention_sweep_task import retention_sweep_task
from app.tasks.scan_attachment_task import retry_countdown, scan_attachment_task


def _pending_attachment(db, message, name, mime_type):
    attachment = Attachment(
        message_id=message.id,
        name=name,
        mime_type=mime_type,
        kind="document",
        size_bytes=10,
        scan_status=ScanStatus.PENDING.value,
    )
    db.add(attachment)
    db.commit()
    return attachment


def test_retry_countdown_doubles():
    assert [retry_countdown(2, n) for n in range(4)] == [2, 4, 8, 16]


def test_scan_task_cleans_attachment(db, setup_message):
    attachment = _pending_attachment(db, setup_message, "notes.txt", "text/plain")
    result = scan_attachment_task.apply(args=[str(attachment.id)]).get()
    assert result == ScanStatus.CLEAN.value
    db.refresh(attachment)
    assert attachment.scan_status == ScanStatus.CLEAN.value
    assert attachment.cdn_url is not None


def test_scan_task_marks_executable_infected(db, setup_message):
    attachment = _pending_attachment(db, setup_message, "setup.exe", "application/exe")
    result = scan_attachment_task.apply(args=[str(attachment.id)]).get()
    assert result == ScanStatus.INFECTED.value


def test_scan_task_publishes_on_its_own_process_bus(db, setup_message):
    """attachment_scanned is delivered to subscribers in the worker process only."""
    attachment = _pending_attachment(db, setup_message, "notes.txt", "text/plain")
    with state.events.subscribe(setup_message.thread_id) as sub:
        scan_attachment_task.apply(args=[str(attachment.id)]).get()
        events = sub.drain()
    assert [e.type for e in events] == [EventType.ATTACHMENT_SCANNED]
    assert events[0].payload["attachment_id"] == str(attachment.id)


def test_scan_task_is_noop_for_missing_attachment(engine):
    assert scan_attachment_task.apply(args=[str(uuid4())]).get() is None


def test_scan_task_ignores_invalid_id(engine):
    assert scan_attachment_task.apply(args=["not-a-uuid"]).get() is None


def test_retention_sweep_task_reports_counts(engine, setup_thread):
    result = retention_sweep_task.apply().get()
    assert result["skipped"] is False
    assert result["threads_processed"] == 1
    assert result["failed_thread_ids"] == []


def test_export_task_completes_job(db, tmp_path, monkeypatch, setup_message, alice):
    monkeypatch.setenv("EXPORT_DIR", str(tmp_path))
    job = ExportJob(
        thread_id=setup_message.thread_id,
        requested_by=alice.user_id,
        status=ExportStatus.PENDING.value,
    )
    db.add(job)
    db.commit()

    assert export_thread_task.apply(args=[str(job.id)]).get() == ExportStatus.COMPLETED.value
    db.refresh(job)
    assert job.download_url.endswith(f"{job.id}.txt")
    assert (tmp_path / str(job.thread_id) / f"{job.id}.txt").exists()
