"""In-memory dedup index."""

import threading
import time
from typing import Any, Dict, Optional, Tuple

from infrastructure.idempotency.cache import DedupIndex
from infrastructure.logging import get_module_logger

logger = get_module_logger()


class InMemoryDedupIndex(DedupIndex):
    """Thread-safe dedup index for single-process deployments and tests.

    Expired claims are evicted lazily on access.
    """

    def __init__(self) -> None:
        self._claims: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _live(self, key: str, now: float) -> Optional[Tuple[str, float]]:
        entry = self._claims.get(key)
        if entry is None:
            return None
        if entry[1] <= now:
            del self._claims[key]
            return None
        return entry

    def claim(self, key: str, owner: str, ttl_ms: int) -> bool:
        now = time.monotonic()
        with self._lock:
            if self._live(key, now) is not None:
                self._hits += 1
                return False
            self._claims[key] = (owner, now + ttl_ms / 1000.0)
            self._misses += 1
            return True

    def get_owner(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key, time.monotonic())
            return entry[0] if entry else None

    def release(self, key: str) -> None:
        with self._lock:
            self._claims.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._claims.clear()
            self._hits = 0
            self._misses = 0
        logger.debug("dedup_index_cleared")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "backend": "memory",
                "claims": len(self._claims),
                "duplicates_detected": self._hits,
                "claims_created": self._misses,
            }
