"""Windowed deduplication of (tenant, recipient, event code, channel).

The first claimant within the window wins; later events for the same key
inside the window are suppressed entirely.
"""

from dataclasses import dataclass
from typing import Optional

from infrastructure.idempotency import DedupIndex, DedupKeyBuilder
from infrastructure.logging import get_module_logger
from modules.notify.domain import ChannelCode

logger = get_module_logger()

DEDUP_OPERATION = "delivery"


@dataclass(frozen=True)
class DedupDecision:
    duplicate: bool
    key: Optional[str] = None
    existing_owner: Optional[str] = None


class DedupFilter:
    def __init__(self, index: DedupIndex, key_builder: DedupKeyBuilder):
        self.index = index
        self.key_builder = key_builder

    def build_key(
        self, tenant_id: str, recipient_id: str, event_code: str, channel: ChannelCode
    ) -> str:
        return self.key_builder.build(
            operation=DEDUP_OPERATION,
            tenant_id=tenant_id,
            recipient_id=recipient_id,
            event_code=event_code,
            channel=channel.value,
        )

    def check_and_claim(
        self,
        tenant_id: str,
        recipient_id: str,
        event_code: str,
        channel: ChannelCode,
        window_ms: int,
        owner: str,
    ) -> DedupDecision:
        """Claim the dedup key for owner, or report the existing claim.

        A window of zero or less disables deduplication. A key already held
        by owner is not a duplicate, so a retried plan keeps its own claims.
        """
        if window_ms <= 0:
            return DedupDecision(duplicate=False)

        key = self.build_key(tenant_id, recipient_id, event_code, channel)
        if self.index.claim(key, owner, window_ms):
            return DedupDecision(duplicate=False, key=key)

        existing_owner = self.index.get_owner(key)
        if existing_owner == owner:
            return DedupDecision(duplicate=False, key=key)
        logger.info(
            "delivery_deduplicated",
            tenant_id=tenant_id,
            recipient_id=recipient_id,
            event_code=event_code,
            channel=channel.value,
            existing_owner=existing_owner,
        )
        return DedupDecision(duplicate=True, key=key, existing_owner=existing_owner)

    def release(self, key: str) -> None:
        """Drop a claim taken by a plan that did not complete."""
        self.index.release(key)
        logger.info("dedup_claim_released", key=key)
