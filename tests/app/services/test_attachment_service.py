"""Tests for AttachmentService: ingest, the scan state machine and re-ingest."""

from uuid import uuid4

import pytest

from app.adapters.base import ScanVerdict
from app.adapters.policy_scanner import PolicyScanner
from app.config import get_settings
from app.constants.messaging import AttachmentKind, EventType, ScanStatus
from app.core.errors import (
    AttachmentNotFound,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    MessageNotFound,
    TransientScanError,
    ValidationError,
)
from app.core.events import EventBus
from app.schemas.message import AttachmentCreate
from app.services.attachment_service import AttachmentService


@pytest.fixture
def settings():
    settings = get_settings()
    settings.attachment_scan_max_attempts = 3
    settings.attachment_max_reingest = 2
    return settings


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def attachment_service(db, scanner, publisher, scan_dispatcher, events, settings):
    return AttachmentService(
        db,
        scanner=scanner,
        publisher=publisher,
        dispatcher=scan_dispatcher,
        events=events,
        settings=settings,
    )


@pytest.fixture
def setup_attachment(attachment_service, faker, setup_message, alice):
    data = AttachmentCreate(
        name=faker.file_name(extension="png"), mime_type="image/png", size_bytes=2048
    )
    return attachment_service.ingest(setup_message.id, data, alice)


def _failed_attachment(attachment_service, scanner, attachment):
    scanner.outcomes = [TransientScanError("scanner down")] * 3
    for _ in range(2):
        with pytest.raises(TransientScanError):
            attachment_service.process_scan(attachment.id)
    return attachment_service.process_scan(attachment.id)


def test_ingest_records_pending_and_dispatches(setup_attachment, scan_dispatcher):
    assert setup_attachment.scan_status == ScanStatus.PENDING.value
    assert setup_attachment.kind == AttachmentKind.IMAGE.value
    assert setup_attachment.scan_attempts == 0
    assert setup_attachment.cdn_url is None
    assert scan_dispatcher.dispatched == [setup_attachment.id]


def test_ingest_only_by_sender(attachment_service, setup_message, bob):
    data = AttachmentCreate(name="a.txt", mime_type="text/plain", size_bytes=1)
    with pytest.raises(ForbiddenError):
        attachment_service.ingest(setup_message.id, data, bob)


def test_ingest_unknown_message(attachment_service, alice):
    data = AttachmentCreate(name="a.txt", mime_type="text/plain", size_bytes=1)
    with pytest.raises(MessageNotFound):
        attachment_service.ingest(uuid4(), data, alice)


def test_ingest_rejects_oversized(attachment_service, settings, setup_message, alice):
    data = AttachmentCreate(
        name="huge.bin",
        mime_type="application/zip",
        size_bytes=settings.attachment_max_size_bytes + 1,
    )
    with pytest.raises(ValidationError):
        attachment_service.ingest(setup_message.id, data, alice)


def test_ingest_survives_dispatch_failure(
    db, scanner, publisher, settings, setup_message, alice
):
    class BrokenDispatcher:
        def dispatch(self, attachment_id):
            raise ConnectionError("broker down")

    svc = AttachmentService(
        db,
        scanner=scanner,
        publisher=publisher,
        dispatcher=BrokenDispatcher(),
        settings=settings,
    )
    data = AttachmentCreate(name="a.txt", mime_type="text/plain", size_bytes=1)
    attachment = svc.ingest(setup_message.id, data, alice)
    assert attachment.scan_status == ScanStatus.PENDING.value


def test_clean_scan_publishes_urls(attachment_service, events, setup_attachment):
    with events.subscribe(setup_attachment.message.thread_id) as sub:
        attachment = attachment_service.process_scan(setup_attachment.id)
        published = sub.drain()

    assert attachment.scan_status == ScanStatus.CLEAN.value
    assert attachment.scan_attempts == 1
    assert attachment.cdn_url == f"https://cdn.test/{attachment.id}"
    assert attachment.thumbnail_url is not None
    assert attachment.scanned_at is not None
    assert [e.type for e in published] == [EventType.ATTACHMENT_SCANNED]
    assert published[0].payload["scan_status"] == ScanStatus.CLEAN.value


def test_executable_is_infected(
    db, publisher, scan_dispatcher, settings, setup_message, alice
):
    """Scenario: application/exe never gets a CDN URL."""
    svc = AttachmentService(
        db,
        scanner=PolicyScanner(),
        publisher=publisher,
        dispatcher=scan_dispatcher,
        settings=settings,
    )
    data = AttachmentCreate(name="setup.exe", mime_type="application/exe", size_bytes=10)
    attachment = svc.ingest(setup_message.id, data, alice)
    attachment = svc.process_scan(attachment.id)
    assert attachment.scan_status == ScanStatus.INFECTED.value
    assert attachment.cdn_url is None
    assert attachment.thumbnail_url is None
    assert attachment.scan_error


def test_unsupported_type_is_terminal_error(
    db, publisher, scan_dispatcher, settings, setup_message, alice
):
    svc = AttachmentService(
        db,
        scanner=PolicyScanner(),
        publisher=publisher,
        dispatcher=scan_dispatcher,
        settings=settings,
    )
    data = AttachmentCreate(
        name="model.bin", mime_type="application/octet-stream", size_bytes=10
    )
    attachment = svc.ingest(setup_message.id, data, alice)
    attachment = svc.process_scan(attachment.id)
    assert attachment.scan_status == ScanStatus.ERROR.value
    assert attachment.scan_attempts == 1
    assert attachment.cdn_url is None


def test_transient_failures_retry_until_budget(
    attachment_service, scanner, setup_attachment
):
    scanner.outcomes = [TransientScanError("timeout"), TransientScanError("timeout")]
    for attempt in (1, 2):
        with pytest.raises(TransientScanError):
            attachment_service.process_scan(setup_attachment.id)
        current = attachment_service.get_attachment(setup_attachment.id)
        assert current.scan_status == ScanStatus.PENDING.value
        assert current.scan_attempts == attempt
        assert current.scan_error == "timeout"

    attachment = attachment_service.process_scan(setup_attachment.id)
    assert attachment.scan_status == ScanStatus.CLEAN.value
    assert attachment.scan_attempts == 3
    assert attachment.scan_error is None


def test_transient_failures_end_in_error(attachment_service, scanner, setup_attachment):
    attachment = _failed_attachment(attachment_service, scanner, setup_attachment)
    assert attachment.scan_status == ScanStatus.ERROR.value
    assert attachment.scan_attempts == 3
    assert attachment.cdn_url is None


def test_publisher_failures_spend_the_attempt_budget(
    db, scanner, scan_dispatcher, settings, setup_message, alice
):
    """A CDN outage is retried like a scanner outage, then recorded as `error`."""

    class BrokenPublisher:
        def publish(self, attachment):
            raise ConnectionError("cdn unreachable")

    svc = AttachmentService(
        db,
        scanner=scanner,
        publisher=BrokenPublisher(),
        dispatcher=scan_dispatcher,
        settings=settings,
    )
    data = AttachmentCreate(name="a.png", mime_type="image/png", size_bytes=1)
    attachment = svc.ingest(setup_message.id, data, alice)

    for attempt in (1, 2):
        with pytest.raises(TransientScanError) as exc:
            svc.process_scan(attachment.id)
        assert isinstance(exc.value.__cause__, ConnectionError)
        current = svc.get_attachment(attachment.id)
        assert current.scan_status == ScanStatus.PENDING.value
        assert current.scan_attempts == attempt
        assert current.cdn_url is None

    attachment = svc.process_scan(attachment.id)
    assert attachment.scan_status == ScanStatus.ERROR.value
    assert attachment.scan_attempts == 3
    assert attachment.scan_error == "cdn unreachable"
    assert attachment.cdn_url is None


def test_terminal_attachment_is_not_rescanned(
    attachment_service, scanner, setup_attachment
):
    attachment_service.process_scan(setup_attachment.id)
    scanner.outcomes = [ScanVerdict(ScanStatus.INFECTED, "late verdict")]
    attachment = attachment_service.process_scan(setup_attachment.id)
    assert attachment.scan_status == ScanStatus.CLEAN.value
    assert attachment.scan_attempts == 1
    assert scanner.calls == 1


def test_process_scan_unknown_attachment(attachment_service):
    with pytest.raises(AttachmentNotFound):
        attachment_service.process_scan(uuid4())


def test_list_for_message(attachment_service, setup_attachment, setup_message):
    attachments = attachment_service.list_for_message(setup_message.id)
    assert [a.id for a in attachments] == [setup_attachment.id]


def test_reingest_failed_attachment(
    attachment_service, scanner, scan_dispatcher, setup_attachment, alice
):
    failed = _failed_attachment(attachment_service, scanner, setup_attachment)
    retry = attachment_service.reingest(failed.id, alice)

    assert retry.id != failed.id
    assert retry.supersedes_id == failed.id
    assert retry.reingest_count == 1
    assert retry.scan_status == ScanStatus.PENDING.value
    assert retry.scan_attempts == 0
    assert scan_dispatcher.dispatched[-1] == retry.id
    assert attachment_service.get_attachment(failed.id).scan_status == ScanStatus.ERROR.value


def test_reingest_twice_conflicts(attachment_service, scanner, setup_attachment, alice):
    failed = _failed_attachment(attachment_service, scanner, setup_attachment)
    attachment_service.reingest(failed.id, alice)
    with pytest.raises(ConflictError):
        attachment_service.reingest(failed.id, alice)


def test_reingest_budget_is_enforced(attachment_service, scanner, setup_attachment, alice):
    """After attachment_max_reingest retries the upload is a permanent failure."""
    current = _failed_attachment(attachment_service, scanner, setup_attachment)
    for _ in range(2):
        retry = attachment_service.reingest(current.id, alice)
        current = _failed_attachment(attachment_service, scanner, retry)
    assert current.reingest_count == 2
    with pytest.raises(InvalidStateError):
        attachment_service.reingest(current.id, alice)


def test_reingest_requires_error_state(attachment_service, setup_attachment, alice):
    with pytest.raises(InvalidStateError):
        attachment_service.reingest(setup_attachment.id, alice)


def test_reingest_only_by_sender(attachment_service, scanner, setup_attachment, bob):
    failed = _failed_attachment(attachment_service, scanner, setup_attachment)
    with pytest.raises(ForbiddenError):
        attachment_service.reingest(failed.id, bob)
