"""Tests for RetentionEnforcer: archive, purge, compliance hold and restore."""

import threading
from datetime import timedelta

import pytest

from app.config import get_settings
from app.constants.messaging import AuditAction, ReportReason, RetentionPolicy
from app.core.locks import KeyedLockRegistry
from app.models.attachment import Attachment
from app.models.audit_log_entry import AuditLogEntry
from app.models.message import Message, MessageReceipt
from app.services.retention_service import RetentionEnforcer
from app.services.thread_service import ThreadService
from app.utils.sweep_lock import ProcessSweepLock
from app.utils.time import utcnow


@pytest.fixture
def settings():
    settings = get_settings()
    settings.retention_purge_multiplier = 2
    settings.audit_retention_days = None
    return settings


@pytest.fixture
def sweep_lock():
    return ProcessSweepLock(threading.Lock())


@pytest.fixture
def enforcer(db, app_state, sweep_lock, settings):
    return RetentionEnforcer(
        db, thread_locks=app_state.thread_locks, sweep_lock=sweep_lock, settings=settings
    )


def _age(db, message, days):
    db.query(Message).filter(Message.id == message.id).update(
        {Message.created_at: utcnow() - timedelta(days=days)}
    )
    db.commit()


def _audit(db, action, thread_id):
    return (
        db.query(AuditLogEntry)
        .filter(
            AuditLogEntry.action == action.value,
            AuditLogEntry.target_id == str(thread_id),
        )
        .all()
    )


def _unread(db, thread_id, user_id):
    return ThreadService(db).get_unread_count(thread_id, user_id)


def test_sweep_archives_expired_messages(
    db, enforcer, message_service, setup_thread, alice, bob
):
    old = message_service.send_message(setup_thread.id, "old news", alice)
    recent = message_service.send_message(setup_thread.id, "fresh", alice)
    _age(db, old, 40)
    assert _unread(db, setup_thread.id, bob.user_id) == 2

    result = enforcer.sweep()

    assert result.skipped is False
    assert result.threads_processed == 1
    assert result.messages_archived == 1
    assert result.messages_purged == 0
    db.refresh(old)
    assert old.archived_at is not None
    items, _ = message_service.list_messages(setup_thread.id)
    assert [m.id for m in items] == [recent.id]
    assert _unread(db, setup_thread.id, bob.user_id) == 1

    entries = _audit(db, AuditAction.RETENTION_ARCHIVED, setup_thread.id)
    assert len(entries) == 1
    assert entries[0].user_id == "system"
    assert entries[0].details["count"] == 1


def test_sweep_is_idempotent(db, enforcer, message_service, setup_thread, alice):
    old = message_service.send_message(setup_thread.id, "old news", alice)
    _age(db, old, 40)
    enforcer.sweep()
    result = enforcer.sweep()
    assert result.messages_archived == 0
    assert len(_audit(db, AuditAction.RETENTION_ARCHIVED, setup_thread.id)) == 1


def test_one_audit_entry_per_thread(db, enforcer, message_service, setup_thread, alice):
    for i in range(3):
        _age(db, message_service.send_message(setup_thread.id, f"m{i}", alice), 40)
    enforcer.sweep()
    entries = _audit(db, AuditAction.RETENTION_ARCHIVED, setup_thread.id)
    assert len(entries) == 1
    assert entries[0].details["count"] == 3
    assert entries[0].details["first_sequence"] == 1
    assert entries[0].details["last_sequence"] == 3


def test_sweep_purges_after_multiplier(
    db, enforcer, message_service, setup_thread, alice, bob
):
    ancient = message_service.send_message(setup_thread.id, "ancient", alice)
    message_service.mark_read(ancient.id, bob.user_id)
    db.add(
        Attachment(
            message_id=ancient.id,
            name="a.png",
            mime_type="image/png",
            kind="image",
            size_bytes=1,
            scan_status="clean",
        )
    )
    db.commit()
    ancient_id = ancient.id
    _age(db, ancient, 70)

    result = enforcer.sweep()

    assert result.messages_archived == 1
    assert result.messages_purged == 1
    assert db.query(Message).filter(Message.id == ancient_id).first() is None
    assert db.query(MessageReceipt).filter(MessageReceipt.message_id == ancient_id).count() == 0
    assert db.query(Attachment).filter(Attachment.message_id == ancient_id).count() == 0
    purged = _audit(db, AuditAction.RETENTION_PURGED, setup_thread.id)
    assert len(purged) == 1
    assert purged[0].details["count"] == 1
    db.refresh(setup_thread)
    assert setup_thread.last_message_id is None


def test_open_report_holds_purge(
    db, enforcer, message_service, moderation_service, setup_thread, alice, bob, moderator
):
    """Scenario: a reported message outlives its retention until the report closes."""
    message = message_service.send_message(setup_thread.id, "evidence", alice)
    report = moderation_service.create_report(message.id, ReportReason.HARASSMENT, "", bob)
    message_id = message.id
    _age(db, message, 70)

    result = enforcer.sweep()
    assert result.messages_archived == 1
    assert result.messages_held == 1
    assert result.messages_purged == 0
    assert db.query(Message).filter(Message.id == message_id).first() is not None

    moderation_service.dismiss_report(report.id, moderator)
    result = enforcer.sweep()
    assert result.messages_purged == 1
    assert db.query(Message).filter(Message.id == message_id).first() is None


def test_reviewed_report_holds_purge(
    db, enforcer, message_service, moderation_service, setup_thread, alice, bob, moderator
):
    """A report under review is still open, so its message is kept."""
    message = message_service.send_message(setup_thread.id, "evidence", alice)
    report = moderation_service.create_report(message.id, ReportReason.SPAM, "", bob)
    moderation_service.review_report(report.id, moderator)
    message_id = message.id
    _age(db, message, 70)

    result = enforcer.sweep()
    assert result.messages_held == 1
    assert result.messages_purged == 0
    assert db.query(Message).filter(Message.id == message_id).first() is not None


def test_permanent_threads_are_skipped(db, enforcer, message_service, alice, bob):
    thread = ThreadService(db).create_thread(
        [alice.user_id, bob.user_id], "", RetentionPolicy.PERMANENT, alice
    )
    message = message_service.send_message(thread.id, "keep me", alice)
    _age(db, message, 5000)
    result = enforcer.sweep()
    assert result.threads_processed == 0
    db.refresh(message)
    assert message.archived_at is None


def test_sweep_skips_when_another_is_running(db, settings, app_state):
    lock = threading.Lock()
    lock.acquire()
    enforcer = RetentionEnforcer(
        db,
        thread_locks=app_state.thread_locks,
        sweep_lock=ProcessSweepLock(lock),
        settings=settings,
    )
    assert enforcer.sweep().skipped is True
    lock.release()


def test_busy_thread_is_deferred(db, sweep_lock, settings, message_service, setup_thread, alice):
    _age(db, message_service.send_message(setup_thread.id, "old", alice), 40)
    locks = KeyedLockRegistry(default_timeout=0.05)
    enforcer = RetentionEnforcer(
        db, thread_locks=locks, sweep_lock=sweep_lock, settings=settings
    )
    with locks.hold(setup_thread.id):
        result = enforcer.sweep()
    assert result.threads_deferred == 1
    assert result.messages_archived == 0

    result = enforcer.sweep()
    assert result.messages_archived == 1


def test_restore_archived(db, enforcer, message_service, setup_thread, alice, bob, moderator):
    old = message_service.send_message(setup_thread.id, "old", alice)
    _age(db, old, 40)
    enforcer.sweep()
    assert _unread(db, setup_thread.id, bob.user_id) == 0

    restored = enforcer.restore_archived(
        setup_thread.id, moderator, retention_policy="1year"
    )

    assert restored == 1
    db.refresh(old)
    db.refresh(setup_thread)
    assert old.archived_at is None
    assert setup_thread.retention_policy == RetentionPolicy.ONE_YEAR.value
    assert setup_thread.last_message_id == old.id
    assert _unread(db, setup_thread.id, bob.user_id) == 1
    entries = _audit(db, AuditAction.RETENTION_RESTORED, setup_thread.id)
    assert entries[0].details["count"] == 1

    # The longer window keeps the message visible on the next sweep
    assert enforcer.sweep().messages_archived == 0


def test_audit_entries_purged_when_configured(db, sweep_lock, settings, app_state, setup_thread):
    settings.audit_retention_days = 1
    db.query(AuditLogEntry).update(
        {AuditLogEntry.created_at: utcnow() - timedelta(days=3)}
    )
    db.commit()
    enforcer = RetentionEnforcer(
        db, thread_locks=app_state.thread_locks, sweep_lock=sweep_lock, settings=settings
    )
    result = enforcer.sweep()
    assert result.audit_entries_purged == 1
    assert db.query(AuditLogEntry).count() == 0
