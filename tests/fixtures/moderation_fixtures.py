"""Fixtures for moderation reports."""

import pytest

from app.constants.messaging import ReportReason
from app.services.moderation_service import ModerationService


@pytest.fixture(scope="function")
def moderation_service(db, app_state) -> ModerationService:
    return ModerationService(db, app_state.thread_locks)


@pytest.fixture(scope="function")
def setup_report(moderation_service, faker, setup_message, bob):
    """Bob reports alice's message for harassment."""
    return moderation_service.create_report(
        setup_message.id, ReportReason.HARASSMENT, faker.sentence(), bob
    )
