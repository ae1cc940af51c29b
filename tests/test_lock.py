import threading
from datetime import timedelta

import pytest

from releasewatch.core.exceptions import StoreUnavailable
from releasewatch.ingestion.lock import IngestionLockManager, new_holder_token
from releasewatch.storage import IngestionLockRepository


def test_acquire_then_contend(lock_manager):
    assert lock_manager.acquire(holder="worker-a")
    assert not lock_manager.acquire(holder="worker-b")
    assert lock_manager.status().locked_by == "worker-a"


def test_locks_are_independent_per_name(lock_manager):
    assert lock_manager.acquire("feed_processing")
    assert lock_manager.acquire("sweep")


def test_mutual_exclusion_across_threads(session_factory, clock):
    contenders = 6
    barrier = threading.Barrier(contenders)
    results: list[bool] = []
    errors: list[Exception] = []
    guard = threading.Lock()

    def contend(i):
        manager = IngestionLockManager(
            IngestionLockRepository(session_factory),
            ttl=timedelta(minutes=30),
            clock=clock,
            default_lock_name="feed_processing",
        )
        barrier.wait()
        try:
            acquired = manager.acquire(holder=f"worker-{i}")
        except Exception as e:
            with guard:
                errors.append(e)
            return
        with guard:
            results.append(acquired)

    threads = [threading.Thread(target=contend, args=(i,)) for i in range(contenders)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert sorted(results) == [False] * (contenders - 1) + [True]


def test_expired_lock_is_taken_over(lock_manager, clock):
    assert lock_manager.acquire(holder="crashed")
    clock.advance(minutes=29)
    assert not lock_manager.acquire(holder="next")
    clock.advance(minutes=2)
    assert lock_manager.status() is None
    assert lock_manager.acquire(holder="next")
    assert lock_manager.status().locked_by == "next"


def test_custom_ttl(lock_manager, clock):
    assert lock_manager.acquire(holder="short", ttl=timedelta(minutes=1))
    clock.advance(minutes=2)
    assert lock_manager.acquire(holder="next")


def test_nonpositive_ttl_rejected(lock_manager):
    with pytest.raises(ValueError):
        lock_manager.acquire(ttl=timedelta(0))


class TestRelease:
    def test_release_is_idempotent(self, lock_manager):
        lock_manager.acquire(holder="a")
        assert lock_manager.release()
        assert not lock_manager.release()
        assert lock_manager.acquire(holder="b")

    def test_holder_checked_release(self, lock_manager):
        lock_manager.acquire(holder="a")
        assert not lock_manager.release(holder="b")
        assert lock_manager.status().locked_by == "a"
        assert lock_manager.release(holder="a")
        assert lock_manager.status() is None


class TestHold:
    def test_hold_releases_on_exit(self, lock_manager):
        with lock_manager.hold() as lease:
            assert lease is not None
            assert lease.expires_at - lease.acquired_at == timedelta(minutes=30)
            with lock_manager.hold() as inner:
                assert inner is None
        assert lock_manager.status() is None

    def test_hold_releases_on_error(self, lock_manager):
        with pytest.raises(RuntimeError):
            with lock_manager.hold():
                raise RuntimeError("boom")
        assert lock_manager.status() is None

    def test_hold_does_not_release_a_lock_it_lost(self, lock_manager, clock):
        with lock_manager.hold() as lease:
            assert lease is not None
            clock.advance(minutes=31)
            assert lock_manager.acquire(holder="successor")
        assert lock_manager.status().locked_by == "successor"


def test_store_failure_fails_closed(broken_session_factory, clock):
    manager = IngestionLockManager(
        IngestionLockRepository(broken_session_factory),
        ttl=timedelta(minutes=30),
        clock=clock,
        default_lock_name="feed_processing",
    )
    with pytest.raises(StoreUnavailable):
        manager.acquire()


def test_holder_tokens_are_unique():
    assert new_holder_token() != new_holder_token()
