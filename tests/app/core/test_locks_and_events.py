"""Tests for the keyed lock registry and the in-process event bus."""

import threading
from uuid import uuid4

import pytest

from app.constants.messaging import EventType
from app.core.errors import OperationTimeout
from app.core.events import EventBus, ThreadEvent
from app.core.locks import KeyedLockRegistry


def test_hold_times_out_when_key_is_busy():
    locks = KeyedLockRegistry(default_timeout=0.05)
    key = uuid4()
    with locks.hold(key):
        assert locks.is_locked(key)
        with pytest.raises(OperationTimeout) as exc_info:
            with locks.hold(key):
                pass
    assert exc_info.value.entity_id == key
    assert not locks.is_locked(key)


def test_different_keys_do_not_block():
    locks = KeyedLockRegistry(default_timeout=0.05)
    with locks.hold("a"):
        with locks.hold("b"):
            assert locks.is_locked("a") and locks.is_locked("b")


def test_lock_released_on_error():
    locks = KeyedLockRegistry(default_timeout=0.05)
    with pytest.raises(RuntimeError):
        with locks.hold("a"):
            raise RuntimeError("boom")
    assert not locks.is_locked("a")


def test_idle_locks_are_evicted():
    locks = KeyedLockRegistry(default_timeout=0.05)
    for _ in range(100):
        with locks.hold(uuid4()):
            assert locks.active_keys() == 1
    assert locks.active_keys() == 0

    with pytest.raises(OperationTimeout):
        with locks.hold("a"):
            with locks.hold("a"):
                pass
    assert locks.active_keys() == 0


def test_waiter_keeps_the_lock_alive():
    """A key released while someone waits hands over the same lock."""
    locks = KeyedLockRegistry(default_timeout=2)
    holding = threading.Event()
    release = threading.Event()
    acquired = []

    def holder():
        with locks.hold("a"):
            holding.set()
            release.wait(2)

    def waiter():
        holding.wait(2)
        with locks.hold("a"):
            acquired.append(locks.is_locked("a"))

    threads = [threading.Thread(target=holder), threading.Thread(target=waiter)]
    for t in threads:
        t.start()
    holding.wait(2)
    release.set()
    for t in threads:
        t.join(5)
    assert acquired == [True]
    assert locks.active_keys() == 0


def test_subscription_receives_thread_events():
    bus = EventBus()
    thread_id = uuid4()
    with bus.subscribe(thread_id) as sub:
        bus.publish(ThreadEvent(EventType.MESSAGE_DELIVERED, thread_id, {"n": 1}))
        bus.publish(ThreadEvent(EventType.THREAD_UPDATED, uuid4(), {}))
        bus.publish(ThreadEvent(EventType.TYPING_CHANGED, thread_id, {"n": 2}))
        events = sub.drain()
    assert [e.type for e in events] == [
        EventType.MESSAGE_DELIVERED,
        EventType.TYPING_CHANGED,
    ]


def test_drain_waits_for_first_event():
    bus = EventBus()
    thread_id = uuid4()
    with bus.subscribe(thread_id) as sub:
        timer = threading.Timer(
            0.05,
            bus.publish,
            args=(ThreadEvent(EventType.THREAD_UPDATED, thread_id, {}),),
        )
        timer.start()
        events = sub.drain(timeout=2.0)
        timer.join()
    assert len(events) == 1


def test_drain_timeout_returns_empty():
    bus = EventBus()
    with bus.subscribe(uuid4()) as sub:
        assert sub.drain(timeout=0.01) == []


def test_closed_subscription_gets_nothing():
    bus = EventBus()
    thread_id = uuid4()
    sub = bus.subscribe(thread_id)
    sub.close()
    bus.publish(ThreadEvent(EventType.THREAD_UPDATED, thread_id, {}))
    assert sub.drain() == []


def test_failing_handler_does_not_break_publish():
    bus = EventBus()
    seen = []

    def broken(event):
        raise ValueError("handler bug")

    bus.add_handler(broken)
    bus.add_handler(seen.append)
    event = ThreadEvent(EventType.THREAD_UPDATED, uuid4(), {})
    bus.publish(event)
    assert seen == [event]


def test_event_to_dict():
    thread_id = uuid4()
    data = ThreadEvent(EventType.THREAD_UPDATED, thread_id, {"change": "muted"}).to_dict()
    assert data["type"] == "thread_updated"
    assert data["thread_id"] == str(thread_id)
    assert data["payload"] == {"change": "muted"}
