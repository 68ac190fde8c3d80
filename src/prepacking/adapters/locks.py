"""Per-key locks guarding lookup-then-create of derived products and lots."""

import abc
import contextlib
import logging
import threading
from typing import Dict, Iterator, Optional

import redis
from redis.exceptions import LockError, RedisError

import config
from prepacking.adapters.http import ExternalServiceError

logger = logging.getLogger(__name__)

LOCK_PREFIX = "prepacking:derived:"


class AbstractLockProvider(abc.ABC):

    @abc.abstractmethod
    def lock(self, key: str) -> contextlib.AbstractContextManager:
        """Hold an exclusive lock on ``key`` for the duration of the block."""
        raise NotImplementedError


class InMemoryLockProvider(AbstractLockProvider):
    """One lock per key inside a single process."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    @contextlib.contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            key_lock = self._locks.setdefault(key, threading.Lock())
        with key_lock:
            yield


class RedisLockProvider(AbstractLockProvider):
    """Distributed lock shared by every worker that talks to the same redis."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        timeout: Optional[float] = None,
        blocking_timeout: Optional[float] = None,
    ):
        timeouts = config.get_lock_timeouts()
        self.client = client or redis.Redis(**config.get_redis_host_and_port())
        self.timeout = timeout if timeout is not None else timeouts["timeout"]
        self.blocking_timeout = (
            blocking_timeout if blocking_timeout is not None else timeouts["blocking_timeout"]
        )

    @contextlib.contextmanager
    def lock(self, key: str) -> Iterator[None]:
        name = f"{LOCK_PREFIX}{key}"
        redis_lock = self.client.lock(
            name, timeout=self.timeout, blocking_timeout=self.blocking_timeout
        )
        try:
            acquired = redis_lock.acquire()
        except RedisError as e:
            logger.error(f"Cannot acquire lock {name}: {e}")
            raise ExternalServiceError(f"Cannot acquire lock {name}") from e
        if not acquired:
            logger.warning(f"Timed out waiting for lock {name}")
            raise ExternalServiceError(f"Timed out waiting for lock {name}")

        try:
            yield
        finally:
            try:
                redis_lock.release()
            except LockError as e:
                # lock expired while held; the next holder already owns it
                logger.warning(f"Lock {name} expired before release: {e}")
