"""Redis-backed dedup index.

Claims are written with ``SET key owner NX PX ttl`` so the check and the
claim happen in one atomic command, and expiry is handled by Redis.

Usage:
    from infrastructure.idempotency.redis_index import RedisDedupIndex

    index = RedisDedupIndex(client=create_redis_client(settings.redis))
    if index.claim("notify-dedup:t1:...", owner=delivery_id, ttl_ms=300000):
        ...
"""

from typing import Any, Dict, Optional, TYPE_CHECKING

from redis import ConnectionPool, Redis, RedisError  # type: ignore

from infrastructure.idempotency.cache import DedupIndex
from infrastructure.logging import get_module_logger

if TYPE_CHECKING:
    from infrastructure.configuration.infrastructure.redis import RedisSettings

logger = get_module_logger()


def create_redis_client(settings: "RedisSettings") -> Redis:
    """Create a Redis client with connection pooling and socket timeouts."""
    pool = ConnectionPool.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    logger.info("redis_connection_pool_created", url=settings.REDIS_URL.split("@")[-1])
    return Redis(connection_pool=pool)


class RedisDedupIndex(DedupIndex):
    """Dedup index shared by every planner process.

    Redis errors propagate to the caller: losing the dedup guarantee
    silently would allow duplicate sends.

    Args:
        client: Redis client (decode_responses=True)
        key_prefix: Prefix prepended to every key
    """

    def __init__(self, client: Redis, key_prefix: str = "notify") -> None:
        self._client = client
        self._prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}" if self._prefix else key

    def claim(self, key: str, owner: str, ttl_ms: int) -> bool:
        try:
            created = self._client.set(self._key(key), owner, nx=True, px=max(int(ttl_ms), 1))
        except RedisError as e:
            logger.error("dedup_claim_failed", key=key, error=str(e))
            raise
        return bool(created)

    def get_owner(self, key: str) -> Optional[str]:
        value = self._client.get(self._key(key))
        return value if value is None else str(value)

    def release(self, key: str) -> None:
        self._client.delete(self._key(key))

    def clear(self) -> None:
        pattern = f"{self._prefix}:*" if self._prefix else "*"
        keys = list(self._client.scan_iter(match=pattern))
        if keys:
            self._client.delete(*keys)
        logger.debug("dedup_index_cleared", keys=len(keys))

    def get_stats(self) -> Dict[str, Any]:
        return {"backend": "redis", "key_prefix": self._prefix}
