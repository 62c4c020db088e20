"""Dedup index infrastructure.

Atomic check-and-claim storage used to collapse duplicate notifications
for the same (tenant, recipient, event, channel) within a window.
"""

from infrastructure.idempotency.cache import DedupIndex
from infrastructure.idempotency.factory import create_dedup_index
from infrastructure.idempotency.key_builder import DedupKeyBuilder
from infrastructure.idempotency.memory import InMemoryDedupIndex

__all__ = [
    "DedupIndex",
    "DedupKeyBuilder",
    "InMemoryDedupIndex",
    "create_dedup_index",
]
