"""Dedup key builder for consistent key generation."""

import hashlib
from typing import Any


class DedupKeyBuilder:
    """Build deterministic dedup keys.

    Keys keep the namespace, operation and tenant readable (useful when
    inspecting the index) and hash the remaining components.

    Example:
        >>> builder = DedupKeyBuilder(namespace="notify-dedup")
        >>> builder.build(
        ...     operation="delivery",
        ...     tenant_id="t1",
        ...     recipient_id="u-1",
        ...     event_code="order.approved",
        ...     channel="email",
        ... )
        'notify-dedup:delivery:t1:3f0c9a51d2b8e4a7'
    """

    def __init__(self, namespace: str):
        self.namespace = namespace

    def build(self, operation: str, tenant_id: str = "", **components: Any) -> str:
        """Build a dedup key from components.

        Args:
            operation: Operation type (e.g., "delivery")
            tenant_id: Tenant scope, kept in clear text
            **components: Remaining key components

        Returns:
            Dedup key string
        """
        sorted_components = sorted(components.items())

        key_parts = [self.namespace, operation, tenant_id]
        key_parts.extend(f"{k}={v}" for k, v in sorted_components)
        key_string = "|".join(str(part) for part in key_parts)

        key_hash = hashlib.sha256(key_string.encode()).hexdigest()[:16]

        return f"{self.namespace}:{operation}:{tenant_id}:{key_hash}"
