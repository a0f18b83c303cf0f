"""Fixtures for threads, messages and the collaborators around them."""

from typing import Callable, Dict, List, Optional
from uuid import UUID

import pytest

from app.adapters.base import BaseCdnPublisher, BaseScanner, PublishedUrls, ScanVerdict
from app.config import Settings, get_settings
from app.constants.messaging import RetentionPolicy, ScanStatus
from app.core.app_state import AppState
from app.core.authorization import ParticipantAuthorizer
from app.core.context import MODERATOR_ROLE, CurrentUser, RequestContext
from app.models.attachment import Attachment
from app.services.conversation_gateway import ConversationGateway
from app.services.message_service import MessageService
from app.services.thread_service import ThreadService


class RecordingDispatcher:
    """Stands in for Celery: remembers what would have been queued."""

    def __init__(self) -> None:
        self.dispatched: List[UUID] = []

    def dispatch(self, entity_id: UUID) -> None:
        self.dispatched.append(entity_id)


class ScriptedScanner(BaseScanner):
    """Returns (or raises) the queued outcomes in order, then `default`."""

    def __init__(self, default: Optional[ScanVerdict] = None) -> None:
        self.outcomes: list = []
        self.default = default or ScanVerdict(ScanStatus.CLEAN)
        self.calls = 0

    def scan(self, attachment: Attachment) -> ScanVerdict:
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeCdnPublisher(BaseCdnPublisher):
    def publish(self, attachment: Attachment) -> PublishedUrls:
        return PublishedUrls(
            cdn_url=f"https://cdn.test/{attachment.id}",
            thumbnail_url=f"https://cdn.test/thumbs/{attachment.id}.jpg",
        )


def make_context(user_id: str, moderator: bool = False) -> RequestContext:
    roles = frozenset({MODERATOR_ROLE}) if moderator else frozenset()
    return RequestContext(
        user=CurrentUser(id=user_id, roles=roles),
        ip_address="127.0.0.1",
        user_agent="pytest",
    )


@pytest.fixture(scope="function")
def alice(faker) -> RequestContext:
    return make_context(f"alice-{faker.uuid4()[:8]}")


@pytest.fixture(scope="function")
def bob(faker) -> RequestContext:
    return make_context(f"bob-{faker.uuid4()[:8]}")


@pytest.fixture(scope="function")
def carol(faker) -> RequestContext:
    """Not a participant of setup_thread."""
    return make_context(f"carol-{faker.uuid4()[:8]}")


@pytest.fixture(scope="function")
def moderator(faker) -> RequestContext:
    return make_context(f"mod-{faker.uuid4()[:8]}", moderator=True)


@pytest.fixture(scope="function")
def app_state() -> AppState:
    """Isolated locks, presence and event bus per test."""
    return AppState()


@pytest.fixture(scope="function")
def message_service(db, app_state) -> MessageService:
    return MessageService(db, app_state.thread_locks)


@pytest.fixture(scope="function")
def setup_thread(db, faker, alice, bob):
    """Thread between alice and bob with a 30 day retention window."""
    return ThreadService(db).create_thread(
        [alice.user_id, bob.user_id],
        faker.sentence(nb_words=4),
        RetentionPolicy.THIRTY_DAYS,
        alice,
    )


@pytest.fixture(scope="function")
def setup_message(message_service, faker, setup_thread, alice):
    """Message from alice to bob."""
    return message_service.send_message(setup_thread.id, faker.sentence(), alice)


@pytest.fixture(scope="function")
def scan_dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture(scope="function")
def export_dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture(scope="function")
def scanner() -> ScriptedScanner:
    return ScriptedScanner()


@pytest.fixture(scope="function")
def publisher() -> FakeCdnPublisher:
    return FakeCdnPublisher()


@pytest.fixture(scope="function")
def settings_for_api(moderator) -> Settings:
    """Settings naming the `moderator` fixture as the only moderator."""
    settings = get_settings()
    settings.moderator_ids = moderator.user_id
    return settings


@pytest.fixture(scope="function")
def gateway(
    db, app_state, scan_dispatcher, export_dispatcher, scanner, publisher, settings_for_api
):
    return ConversationGateway(
        db,
        authorizer=ParticipantAuthorizer(db, settings_for_api.moderators),
        app_state=app_state,
        scan_dispatcher=scan_dispatcher,
        export_dispatcher=export_dispatcher,
        scanner=scanner,
        publisher=publisher,
        settings=settings_for_api,
    )


@pytest.fixture(scope="function")
def auth_headers() -> Callable[..., Dict[str, str]]:
    """Headers the identity layer forwards for a caller; roles come from settings."""

    def _headers(context: RequestContext) -> Dict[str, str]:
        return {"X-User-Id": context.user_id}

    return _headers
