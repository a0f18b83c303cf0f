"""
In-process publish/subscribe for thread events.

The core only guarantees state is queryable; the bus lets a transport (long
poll here, websockets or NATS elsewhere) learn about changes without polling
the database.

Delivery never leaves the publishing process. Events raised by Celery workers
(attachment_scanned from the scan task) reach only subscribers inside that
worker; API clients learn scan results from GET /attachments/{id}.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, DefaultDict, Dict, List, Optional
from uuid import UUID

from app.constants.messaging import EventType
from app.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThreadEvent:
    type: EventType
    thread_id: UUID
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "thread_id": str(self.thread_id),
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


EventHandler = Callable[[ThreadEvent], None]


class Subscription:
    """Buffered queue of events for one thread; close() detaches it."""

    def __init__(self, bus: "EventBus", thread_id: UUID, maxsize: int = 1000) -> None:
        self._bus = bus
        self.thread_id = thread_id
        self._queue: "queue.Queue[ThreadEvent]" = queue.Queue(maxsize=maxsize)

    def _offer(self, event: ThreadEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning("Dropping event for slow subscriber on thread %s", self.thread_id)

    def get(self, timeout: Optional[float] = None) -> Optional[ThreadEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self, timeout: float = 0.0) -> List[ThreadEvent]:
        """Wait up to timeout for the first event, then return everything buffered."""
        events: List[ThreadEvent] = []
        first = self.get(timeout=timeout) if timeout > 0 else self._get_nowait()
        if first is None:
            return events
        events.append(first)
        while True:
            nxt = self._get_nowait()
            if nxt is None:
                return events
            events.append(nxt)

    def _get_nowait(self) -> Optional[ThreadEvent]:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class EventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: DefaultDict[UUID, List[Subscription]] = defaultdict(list)
        self._handlers: List[EventHandler] = []

    def subscribe(self, thread_id: UUID) -> Subscription:
        sub = Subscription(self, thread_id)
        with self._lock:
            self._subscriptions[thread_id].append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscriptions.get(sub.thread_id, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subscriptions.pop(sub.thread_id, None)

    def add_handler(self, handler: EventHandler) -> None:
        """Register a callback that sees every event (e.g. an external publisher)."""
        with self._lock:
            self._handlers.append(handler)

    def publish(self, event: ThreadEvent) -> None:
        with self._lock:
            subs = list(self._subscriptions.get(event.thread_id, []))
            handlers = list(self._handlers)
        for sub in subs:
            sub._offer(event)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.type)
