import datetime

import pytest
import redis

from transport_planner.core.exceptions import PlanningInProgressError
from transport_planner.core.locks import PlanningLock, lock_key

DAY = datetime.date(2025, 3, 5)


class FakeRedisLock:
    held = set()

    def __init__(self, name, expired=False):
        self.name = name
        self.expired = expired

    def acquire(self, blocking=True):
        if self.name in FakeRedisLock.held:
            return False
        FakeRedisLock.held.add(self.name)
        return True

    def release(self):
        FakeRedisLock.held.discard(self.name)
        if self.expired:
            raise redis.exceptions.LockNotOwnedError("expired")


class FakeRedis:
    def __init__(self, expired=False):
        self.expired = expired
        self.calls = []

    def lock(self, name, timeout=None, blocking=True):
        self.calls.append((name, timeout, blocking))
        return FakeRedisLock(name, self.expired)


@pytest.fixture(autouse=True)
def clear_fake_locks():
    FakeRedisLock.held.clear()
    yield
    FakeRedisLock.held.clear()


def test_lock_key():
    assert lock_key(3, DAY) == "planning-lock:3:2025-03-05"


def test_local_lock_rejects_second_holder_for_same_day():
    lock = PlanningLock(redis_url=None)
    with lock.hold(1, DAY):
        with pytest.raises(PlanningInProgressError):
            with lock.hold(1, DAY):
                pass
        # Different owner or date is independent
        with lock.hold(2, DAY):
            pass
        with lock.hold(1, DAY + datetime.timedelta(days=1)):
            pass

    with lock.hold(1, DAY):
        pass


def test_local_lock_released_on_error():
    lock = PlanningLock(redis_url=None)
    with pytest.raises(RuntimeError):
        with lock.hold(1, DAY):
            raise RuntimeError("boom")
    with lock.hold(1, DAY):
        pass


def test_local_registry_forgets_released_days():
    lock = PlanningLock(redis_url=None)
    for offset in range(30):
        with lock.hold(1, DAY + datetime.timedelta(days=offset)):
            assert lock._held_keys == {lock_key(1, DAY + datetime.timedelta(days=offset))}

    # A rejected second holder leaves the first one's key in place
    with lock.hold(1, DAY):
        with pytest.raises(PlanningInProgressError):
            with lock.hold(1, DAY):
                pass
        assert lock._held_keys == {lock_key(1, DAY)}

    assert lock._held_keys == set()


def test_redis_lock_used_when_configured():
    lock = PlanningLock(redis_url=None, timeout_seconds=30)
    lock.redis_conn = FakeRedis()

    with lock.hold(1, DAY):
        with pytest.raises(PlanningInProgressError):
            with lock.hold(1, DAY):
                pass

    assert lock.redis_conn.calls[0] == ("planning-lock:1:2025-03-05", 30, False)
    assert FakeRedisLock.held == set()


def test_redis_lock_expiry_on_release_is_tolerated():
    lock = PlanningLock(redis_url=None)
    lock.redis_conn = FakeRedis(expired=True)
    with lock.hold(1, DAY):
        pass
