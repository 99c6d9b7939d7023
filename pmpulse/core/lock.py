"""
Durable, cross-process lock guaranteeing a single active sync run.
"""
import logging
from typing import Optional

import redis
from redis.exceptions import LockError

from pmpulse.core.config import settings

logger = logging.getLogger(__name__)


def get_redis_client(url: Optional[str] = None) -> redis.Redis:
    return redis.Redis.from_url(
        url or settings.REDIS_URL,
        socket_timeout=5,
        socket_connect_timeout=5,
    )


class SyncLock:
    """
    Non-blocking Redis lock keyed by the sync family name.

    The TTL outlives the run timeout so a crashed worker releases the lock on its own.
    """

    def __init__(self, client: redis.Redis, name: str = None, ttl_seconds: int = None):
        self.client = client
        self.name = name or settings.SYNC_LOCK_NAME
        self.ttl_seconds = ttl_seconds or settings.SYNC_TIMEOUT_SECONDS + 120
        self._lock = None

    def acquire(self) -> bool:
        self._lock = self.client.lock(self.name, timeout=self.ttl_seconds, blocking=False)
        acquired = bool(self._lock.acquire(blocking=False))
        if acquired:
            logger.info(f"Acquired sync lock {self.name}")
        else:
            logger.info(f"Sync lock {self.name} is held by another run")
            self._lock = None
        return acquired

    def release(self) -> None:
        if self._lock is None:
            return
        try:
            self._lock.release()
            logger.info(f"Released sync lock {self.name}")
        except LockError:
            # TTL expired and another worker may own it now
            logger.warning(f"Sync lock {self.name} was no longer owned at release")
        finally:
            self._lock = None

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
