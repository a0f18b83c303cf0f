from app.config import get_settings
from app.core.events import EventBus
from app.core.locks import KeyedLockRegistry
from app.services.presence_service import PresenceTracker


class AppState:
    """Process-wide, non-durable collaborators shared by every request."""

    def __init__(self) -> None:
        settings = get_settings()
        self.events = EventBus()
        self.thread_locks = KeyedLockRegistry(
            default_timeout=settings.operation_timeout_seconds
        )
        self.presence = PresenceTracker(ttl_seconds=settings.presence_ttl_seconds)


state = AppState()
