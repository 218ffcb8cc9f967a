import uuid
from typing import Optional

import redis

from rooster.config.settings import settings
from rooster.utils.logging import get_logger

logger = get_logger()

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Shared Redis client used for coordination (locks)."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            password=settings.REDIS_PASSWORD or None,
            db=settings.REDIS_DB,
            socket_timeout=5,
            socket_connect_timeout=5,
            decode_responses=True,
        )
    return _redis_client


class RedisLock:
    """
    Advisory lock backed by Redis SET NX PX.

    The TTL is the only liveness mechanism: a lock whose owner crashed expires
    on its own. Release only deletes the key while it still carries this
    instance's token, so a lock re-acquired by another worker after expiry is
    left alone.
    """

    def __init__(self, client: redis.Redis, key: str, ttl_ms: int = 30000):
        self.client = client
        self.key = key
        self.ttl_ms = ttl_ms
        self.token = uuid.uuid4().hex
        self._acquired = False

    def acquire(self) -> bool:
        self._acquired = bool(
            self.client.set(self.key, self.token, nx=True, px=self.ttl_ms)
        )
        return self._acquired

    def release(self) -> None:
        if not self._acquired:
            return
        try:
            current = self.client.get(self.key)
            if isinstance(current, bytes):
                current = current.decode()
            if current == self.token:
                self.client.delete(self.key)
        except redis.RedisError as e:
            # Expiry cleans up after us
            logger.warning(f"Failed to release lock {self.key}: {str(e)}")
        finally:
            self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    def __enter__(self) -> "RedisLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def notification_lock_key(event_log_id: str) -> str:
    return f"notification-lock:{event_log_id}"
