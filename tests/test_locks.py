"""Tests for per-key locks."""
import threading
import time

from chat_checkout.locks import KeyedLocks


def test_lock_is_dropped_after_use():
    locks = KeyedLocks()

    with locks.hold("a"):
        assert len(locks) == 1
    with locks.try_hold("b") as acquired:
        assert acquired is True

    assert len(locks) == 0


def test_busy_key_is_reported_and_kept_until_released():
    locks = KeyedLocks()

    with locks.hold("a"):
        with locks.try_hold("a") as acquired:
            assert acquired is False
        assert len(locks) == 1

    assert len(locks) == 0


def test_waiter_gets_the_same_lock():
    """A caller waiting on a key keeps its lock alive; the holder and the waiter never overlap."""
    locks = KeyedLocks()
    inside = []

    def waiter():
        with locks.hold("a"):
            inside.append("waiter")

    with locks.hold("a"):
        t = threading.Thread(target=waiter)
        t.start()
        time.sleep(0.2)
        inside.append("holder")
    t.join(timeout=5)

    assert inside == ["holder", "waiter"]
    assert len(locks) == 0


def test_reentrant_factory():
    locks = KeyedLocks(threading.RLock)

    with locks.hold("a"):
        with locks.hold("a"):
            assert len(locks) == 1

    assert len(locks) == 0
