"""Dedup index factory."""

from typing import TYPE_CHECKING

from infrastructure.idempotency.cache import DedupIndex
from infrastructure.idempotency.memory import InMemoryDedupIndex
from infrastructure.logging import get_module_logger

if TYPE_CHECKING:
    from infrastructure.configuration import Settings

logger = get_module_logger()


def create_dedup_index(settings: "Settings") -> DedupIndex:
    """Create the dedup index selected by DEDUP_BACKEND.

    Returns:
        RedisDedupIndex for multi-process deployments, InMemoryDedupIndex
        otherwise.
    """
    backend = settings.dedup.DEDUP_BACKEND
    if backend == "redis":
        from infrastructure.idempotency.redis_index import (
            RedisDedupIndex,
            create_redis_client,
        )

        index: DedupIndex = RedisDedupIndex(
            client=create_redis_client(settings.redis),
            key_prefix=settings.redis.REDIS_KEY_PREFIX,
        )
    else:
        index = InMemoryDedupIndex()

    logger.info("initialized_dedup_index", backend=backend)
    return index
