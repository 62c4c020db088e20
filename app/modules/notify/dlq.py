"""Dead letter queue management.

Terminal delivery failures are recorded with a self-contained payload so
an operator can inspect and replay them. Replaying creates a fresh
delivery row; the original entry is kept and marked replayed.
"""

from dataclasses import dataclass
from typing import List, Optional

from infrastructure.logging import get_module_logger, redact_identifier
from infrastructure.queue import JobQueue
from modules.notify.dispatch import enqueue_delivery
from modules.notify.domain import (
    DeliverNotificationPayload,
    DlqEntry,
    ErrorCategory,
    NotificationDelivery,
    new_id,
    utc_now,
)
from modules.notify.persistence import DeliveryRepository, DlqRepository

logger = get_module_logger()

REPLAY_ATTEMPTS = 3


@dataclass
class BulkReplayResult:
    replayed: int = 0
    errors: int = 0


class DlqManager:
    def __init__(
        self,
        dlq: DlqRepository,
        deliveries: DeliveryRepository,
        queue: JobQueue,
        backoff_delay_ms: int = 2000,
        replay_attempts: int = REPLAY_ATTEMPTS,
    ):
        self.dlq = dlq
        self.deliveries = deliveries
        self.queue = queue
        self.backoff_delay_ms = backoff_delay_ms
        self.replay_attempts = replay_attempts

    def move_to_dlq(
        self,
        payload: DeliverNotificationPayload,
        last_error: str,
        error_category: ErrorCategory,
        attempt_count: int,
    ) -> DlqEntry:
        """Record a terminal failure.

        Idempotent per delivery: an unreplayed entry for the same delivery is
        returned instead of creating a second one.
        """
        existing = self.dlq.find_unreplayed_by_delivery(
            payload.tenant_id, payload.delivery_id
        )
        if existing is not None:
            logger.info(
                "dlq_entry_exists",
                tenant_id=payload.tenant_id,
                delivery_id=payload.delivery_id,
                dlq_entry_id=existing.id,
            )
            return existing

        entry = DlqEntry(
            tenant_id=payload.tenant_id,
            delivery_id=payload.delivery_id,
            message_id=payload.message_id,
            channel=payload.channel,
            provider_code=payload.provider_code,
            recipient_id=payload.recipient_id,
            recipient_addr=payload.recipient_addr,
            payload=payload.model_dump(mode="json"),
            last_error=last_error,
            error_category=error_category,
            attempt_count=attempt_count,
        )
        self.dlq.create(entry)
        logger.warning(
            "delivery_dead_lettered",
            tenant_id=payload.tenant_id,
            delivery_id=payload.delivery_id,
            channel=payload.channel.value,
            recipient=redact_identifier(payload.recipient_addr),
            error_category=error_category.value,
            attempt_count=attempt_count,
            error=last_error,
        )
        return entry

    def list(
        self, tenant_id: str, unreplayed_only: bool = False, limit: int = 100
    ) -> List[DlqEntry]:
        return self.dlq.list(tenant_id, unreplayed_only=unreplayed_only, limit=limit)

    def inspect(self, tenant_id: str, entry_id: str) -> Optional[DlqEntry]:
        return self.dlq.get_by_id(tenant_id, entry_id)

    def retry(self, tenant_id: str, entry_id: str, replayed_by: str) -> bool:
        """Replay one entry as a fresh delivery; False if the entry is unknown."""
        entry = self.dlq.get_by_id(tenant_id, entry_id)
        if entry is None:
            logger.warning("dlq_entry_not_found", tenant_id=tenant_id, dlq_entry_id=entry_id)
            return False

        payload = DeliverNotificationPayload.model_validate(entry.payload)
        payload = payload.model_copy(update={"delivery_id": new_id(), "replay_of": entry.id})

        delivery = NotificationDelivery(
            id=payload.delivery_id,
            tenant_id=payload.tenant_id,
            message_id=payload.message_id,
            channel=payload.channel,
            provider_code=payload.provider_code,
            recipient_id=payload.recipient_id,
            recipient_addr=payload.recipient_addr,
            max_attempts=self.replay_attempts,
            payload=payload.model_dump(mode="json"),
        )
        self.deliveries.create_many([delivery])
        job_id = enqueue_delivery(
            self.queue,
            payload,
            attempts=self.replay_attempts,
            backoff_delay_ms=self.backoff_delay_ms,
        )
        self.dlq.mark_replayed(tenant_id, entry.id, replayed_by, utc_now())

        logger.info(
            "dlq_entry_replayed",
            tenant_id=tenant_id,
            dlq_entry_id=entry.id,
            original_delivery_id=entry.delivery_id,
            delivery_id=delivery.id,
            job_id=job_id,
            replayed_by=replayed_by,
        )
        return True

    def bulk_replay(
        self, tenant_id: str, replayed_by: str, limit: int = 100
    ) -> BulkReplayResult:
        """Replay unreplayed entries one by one; a failing entry does not stop the rest."""
        result = BulkReplayResult()
        for entry in self.dlq.list(tenant_id, unreplayed_only=True, limit=limit):
            try:
                if self.retry(tenant_id, entry.id, replayed_by):
                    result.replayed += 1
                else:
                    result.errors += 1
            except Exception as e:
                result.errors += 1
                logger.error(
                    "dlq_replay_failed",
                    tenant_id=tenant_id,
                    dlq_entry_id=entry.id,
                    error=str(e),
                    exc_info=True,
                )
        logger.info(
            "dlq_bulk_replay_completed",
            tenant_id=tenant_id,
            replayed=result.replayed,
            errors=result.errors,
        )
        return result
