"""Tests for ConversationGateway: authorization, orchestration and events."""

from uuid import uuid4

import pytest

from app.constants.messaging import (
    EventType,
    ModerationStatus,
    ReportAction,
    ReportReason,
    ScanStatus,
)
from app.core.errors import MessageNotFound, ThreadNotFound, Unauthorized, ValidationError
from app.models.message import Message
from app.schemas.message import AttachmentCreate, AttachmentIngest, MessageCreate
from app.schemas.moderation import ReportCreate
from app.schemas.thread import DirectThreadCreate, ThreadCreate


def test_create_thread_adds_caller(gateway, alice, bob):
    thread = gateway.create_thread(
        alice, ThreadCreate(participants=[bob.user_id], subject="plans")
    )
    assert thread.participant_ids == [alice.user_id, bob.user_id]


def test_start_direct_thread(gateway, alice, bob):
    data = DirectThreadCreate(recipient_id=bob.user_id, retention_policy="7days")
    thread, created = gateway.start_direct_thread(alice, data)
    assert created is True
    assert thread.retention_policy == "7d"
    again, created = gateway.start_direct_thread(
        bob, DirectThreadCreate(recipient_id=alice.user_id)
    )
    assert created is False
    assert again.id == thread.id


def test_non_participant_is_unauthorized(gateway, setup_thread, setup_message, carol):
    with pytest.raises(Unauthorized):
        gateway.get_thread(carol, setup_thread.id)
    with pytest.raises(Unauthorized):
        gateway.send_message(carol, setup_thread.id, MessageCreate(content="hi"))
    with pytest.raises(Unauthorized):
        gateway.list_messages(carol, setup_thread.id)
    with pytest.raises(Unauthorized):
        gateway.mark_read(carol, setup_message.id)
    with pytest.raises(Unauthorized):
        gateway.set_typing(carol, setup_thread.id, True)


def test_unauthorized_leaves_no_trace(db, gateway, setup_thread, carol):
    with pytest.raises(Unauthorized):
        gateway.send_message(carol, setup_thread.id, MessageCreate(content="hi"))
    assert db.query(Message).count() == 0


def test_missing_resources_are_not_found(gateway, alice):
    with pytest.raises(ThreadNotFound):
        gateway.get_thread(alice, uuid4())
    with pytest.raises(MessageNotFound):
        gateway.get_message(alice, uuid4())


def test_moderator_actions_require_role(gateway, setup_report, bob, moderator):
    with pytest.raises(Unauthorized):
        gateway.review_report(bob, setup_report.id)
    with pytest.raises(Unauthorized):
        gateway.audit_entries_query(bob)
    report = gateway.review_report(moderator, setup_report.id)
    assert report.moderator_id == moderator.user_id


def test_moderator_can_read_any_thread(gateway, setup_thread, setup_message, moderator):
    assert gateway.get_thread(moderator, setup_thread.id).id == setup_thread.id
    page = gateway.list_messages(moderator, setup_thread.id)
    assert [m.id for m in page.items] == [setup_message.id]


def test_moderator_cannot_post_without_membership(gateway, setup_thread, moderator):
    with pytest.raises(Unauthorized):
        gateway.send_message(moderator, setup_thread.id, MessageCreate(content="hi"))


def test_send_message_with_attachments(gateway, scan_dispatcher, setup_thread, alice):
    data = MessageCreate(
        content="see attached",
        attachments=[
            AttachmentCreate(name="photo.jpg", mime_type="image/jpeg", size_bytes=100),
            AttachmentCreate(name="notes.pdf", mime_type="application/pdf", size_bytes=200),
        ],
    )
    message = gateway.send_message(alice, setup_thread.id, data)
    assert len(message.attachments) == 2
    assert all(a.scan_status == ScanStatus.PENDING.value for a in message.attachments)
    assert sorted(scan_dispatcher.dispatched) == sorted(a.id for a in message.attachments)


def test_send_message_with_invalid_attachment_commits_nothing(
    db, gateway, setup_thread, alice
):
    data = MessageCreate(
        content="too big",
        attachments=[
            AttachmentCreate(
                name="huge.zip",
                mime_type="application/zip",
                size_bytes=gateway.settings.attachment_max_size_bytes + 1,
            )
        ],
    )
    with pytest.raises(ValidationError):
        gateway.send_message(alice, setup_thread.id, data)
    assert db.query(Message).count() == 0


def test_send_message_publishes_events(gateway, app_state, setup_thread, alice):
    with app_state.events.subscribe(setup_thread.id) as sub:
        message = gateway.send_message(alice, setup_thread.id, MessageCreate(content="hey"))
        events = sub.drain()
    assert [e.type for e in events] == [
        EventType.MESSAGE_DELIVERED,
        EventType.THREAD_UPDATED,
    ]
    assert events[0].payload["message_id"] == str(message.id)


def test_typing_round_trip(gateway, setup_thread, alice, bob):
    gateway.set_typing(bob, setup_thread.id, True)
    assert gateway.list_typing(alice, setup_thread.id) == {bob.user_id}
    assert gateway.list_typing(bob, setup_thread.id) == set()


def test_list_messages_page(gateway, setup_thread, alice):
    for i in range(3):
        gateway.send_message(alice, setup_thread.id, MessageCreate(content=f"m{i}"))
    page = gateway.list_messages(alice, setup_thread.id, limit=2)
    assert [m.content for m in page.items] == ["m2", "m1"]
    assert page.has_more is True
    rest = gateway.list_messages(alice, setup_thread.id, limit=2, before=page.next_cursor)
    assert [m.content for m in rest.items] == ["m0"]
    assert rest.has_more is False


def test_ingest_and_scan_flow(db, gateway, scanner, setup_message, alice, bob):
    attachment = gateway.ingest_attachment(
        alice,
        AttachmentIngest(
            message_id=setup_message.id,
            name="clip.mp4",
            mime_type="video/mp4",
            size_bytes=1000,
        ),
    )
    gateway.attachments.process_scan(attachment.id)
    seen = gateway.get_attachment(bob, attachment.id)
    assert seen.scan_status == ScanStatus.CLEAN.value
    assert seen.cdn_url is not None


def test_report_and_resolve(db, gateway, setup_message, bob, moderator):
    report = gateway.report_message(
        bob, ReportCreate(message_id=setup_message.id, reason=ReportReason.SPAM)
    )
    assert gateway.reports_query(moderator).count() == 1
    gateway.resolve_report(moderator, report.id, ReportAction.REMOVED)
    message = gateway.get_message(bob, setup_message.id)
    assert message.moderation_status == ModerationStatus.REMOVED.value


def test_restore_archived_requires_moderator(gateway, setup_thread, alice, moderator):
    with pytest.raises(Unauthorized):
        gateway.restore_archived(alice, setup_thread.id)
    assert gateway.restore_archived(moderator, setup_thread.id) == 0


def test_export_thread(gateway, export_dispatcher, setup_thread, alice, carol):
    job = gateway.export_thread(alice, setup_thread.id)
    assert export_dispatcher.dispatched == [job.id]
    assert gateway.get_export_job(alice, job.id).id == job.id
    with pytest.raises(Unauthorized):
        gateway.get_export_job(carol, job.id)


def test_poll_events_times_out_empty(gateway, setup_thread, alice):
    assert gateway.poll_events(alice, setup_thread.id, timeout=0.01) == []
