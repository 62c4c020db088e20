"""Dedup index abstract base class."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class DedupIndex(ABC):
    """Abstract base class for dedup index implementations.

    A dedup index records which owner (e.g. a delivery id) first claimed a
    key, for a bounded time. ``claim`` must be atomic: when two callers
    race for the same key, exactly one of them wins.
    """

    @abstractmethod
    def claim(self, key: str, owner: str, ttl_ms: int) -> bool:
        """Atomically claim key for owner if nobody holds it.

        Args:
            key: Dedup key.
            owner: Identifier stored as the claim value.
            ttl_ms: Claim lifetime in milliseconds.

        Returns:
            True if this call created the claim, False if the key was held.
        """

    @abstractmethod
    def get_owner(self, key: str) -> Optional[str]:
        """Return the owner of a live claim, or None."""

    @abstractmethod
    def release(self, key: str) -> None:
        """Drop a claim (used when the claimant could not be persisted)."""

    @abstractmethod
    def clear(self) -> None:
        """Clear all claims (for testing).

        Note: Implementation-specific, may be expensive in a shared store.
        """

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """Get index statistics (implementation-specific)."""
