"""Run-level mutual exclusion.

Only one run may process the pending set at a time. The periodic trigger
asks the guard before starting a run and skips the tick if a run is still
in flight.
"""

import logging
import threading
from typing import Optional

import redis  # type: ignore

from cloner.errors import FatalStartupError, RunAbortError

logger = logging.getLogger(__name__)


class LocalRunGuard:
    """In-process guard for a single service instance."""

    def __init__(self):
        self._lock = threading.Lock()

    def acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()


class RedisRunGuard:
    """Redis-backed guard shared by every process pointed at the same key.

    The lock carries a TTL so a crashed holder cannot block runs forever.
    """

    def __init__(self, host: str = '127.0.0.1', port: int = 6379, db: int = 0,
                 key: str = 'media_cloner:run_lock', ttl_seconds: int = 3600,
                 client: Optional[redis.Redis] = None):
        self.key = key
        try:
            self.redis_client = client or redis.Redis(
                host=host,
                port=port,
                db=db,
                decode_responses=True,
            )
            # Test the connection so a bad lock backend fails at startup
            self.redis_client.ping()
            logger.info(f"Run guard connected to Redis at {host}:{port}")
        except redis.exceptions.RedisError as e:
            raise FatalStartupError(f"Run guard could not connect to Redis: {e}") from e
        self._lock = self.redis_client.lock(key, timeout=ttl_seconds, blocking=False)

    def acquire(self) -> bool:
        try:
            return bool(self._lock.acquire(blocking=False))
        except redis.exceptions.RedisError as e:
            raise RunAbortError(f"could not acquire run lock {self.key}: {e}") from e

    def release(self) -> None:
        try:
            self._lock.release()
        except redis.exceptions.LockError as e:
            # TTL expired mid-run, another holder may have taken over
            logger.warning(f"Run lock {self.key} was no longer held at release: {e}")
        except redis.exceptions.RedisError as e:
            logger.error(f"Failed to release run lock {self.key}: {e}")
