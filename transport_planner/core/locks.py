"""
Per (date, owner) planning lock.

Two planning runs for the same owner and day would read the same open
locations and write conflicting routes, so runs are serialized. With
REDIS_URL set the lock is a redis lock shared by every API process;
otherwise a process-local registry is used.
"""

import threading
from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional, Set

import redis

from transport_planner.core.config import settings
from transport_planner.core.exceptions import PlanningInProgressError
from transport_planner.core.logging_config import logger

LOCK_KEY_PREFIX = "planning-lock"


def lock_key(owner_id: int, plan_date: date) -> str:
    return f"{LOCK_KEY_PREFIX}:{owner_id}:{plan_date.isoformat()}"


class PlanningLock:
    """Non-blocking mutual exclusion for planning runs."""

    def __init__(
        self,
        redis_url: Optional[str] = settings.REDIS_URL,
        timeout_seconds: int = settings.PLANNING_LOCK_TIMEOUT_SECONDS
    ):
        self.timeout_seconds = timeout_seconds
        self.redis_conn = redis.from_url(redis_url) if redis_url else None
        self._held_keys: Set[str] = set()
        self._registry_lock = threading.Lock()

        if self.redis_conn is not None:
            logger.info("PlanningLock using redis")
        else:
            logger.info("PlanningLock using process-local locks (no REDIS_URL configured)")

    @contextmanager
    def hold(self, owner_id: int, plan_date: date) -> Iterator[None]:
        """
        Hold the lock for (owner, date) for the duration of the block.

        Raises:
            PlanningInProgressError: If another run already holds it
        """
        key = lock_key(owner_id, plan_date)
        if self.redis_conn is not None:
            with self._hold_redis(key, owner_id, plan_date):
                yield
        else:
            with self._hold_local(key, owner_id, plan_date):
                yield

    @contextmanager
    def _hold_redis(self, key: str, owner_id: int, plan_date: date) -> Iterator[None]:
        lock = self.redis_conn.lock(key, timeout=self.timeout_seconds, blocking=False)
        if not lock.acquire(blocking=False):
            logger.warning(f"Planning lock {key} is held by another run")
            raise PlanningInProgressError(owner_id, plan_date)
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.exceptions.LockError as e:
                # Expired before release; the run outlived the timeout
                logger.warning(f"Planning lock {key} expired before release: {e}")

    @contextmanager
    def _hold_local(self, key: str, owner_id: int, plan_date: date) -> Iterator[None]:
        with self._registry_lock:
            if key in self._held_keys:
                logger.warning(f"Planning lock {key} is held by another run")
                raise PlanningInProgressError(owner_id, plan_date)
            self._held_keys.add(key)
        try:
            yield
        finally:
            with self._registry_lock:
                self._held_keys.discard(key)
