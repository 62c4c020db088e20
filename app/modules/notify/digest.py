"""Digest staging and flushing.

Deliveries for recipients who asked for hourly, daily or weekly digests
are staged instead of sent. A flush groups the pending entries of one
frequency by (tenant, recipient, channel), renders one digest per group
and hands it to the delivery path as a regular delivery flagged
``digest=True`` so it is never re-staged.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from infrastructure.logging import get_module_logger
from infrastructure.queue import JobQueue
from infrastructure.resilience import run_non_critical
from modules.notify.channels import ChannelRegistry
from modules.notify.dispatch import enqueue_delivery
from modules.notify.domain import (
    ChannelCode,
    Decision,
    DeliverNotificationPayload,
    DeliveryStatus,
    DigestStagingEntry,
    ExplainPhase,
    Frequency,
    MessageStatus,
    NotificationDelivery,
    NotificationMessage,
    Priority,
    RenderedTemplate,
    utc_now,
)
from modules.notify.explain import build_step
from modules.notify.persistence import (
    DeliveryRepository,
    DigestStagingRepository,
    MessageRepository,
)
from modules.notify.templates import DIGEST_TEMPLATE_KEY, TemplateRenderer

logger = get_module_logger()

DIGEST_RULE_CODE = "digest"
DIGEST_EVENT_TYPE = "notification.digest"

GroupKey = Tuple[str, str, ChannelCode]


@dataclass
class FlushResult:
    frequency: Frequency
    recipients: int = 0
    entries: int = 0
    errors: int = 0
    message_ids: List[str] = field(default_factory=list)


def fallback_digest(entries: List[DigestStagingEntry], omitted: int) -> RenderedTemplate:
    """Plain-text digest used when no digest template is configured."""
    total = len(entries) + omitted
    lines = [f"- {entry.subject or entry.event_code}" for entry in entries]
    if omitted:
        lines.append(f"...and {omitted} more")
    noun = "notification" if total == 1 else "notifications"
    return RenderedTemplate(
        subject=f"You have {total} new {noun}",
        body_text="\n".join(lines),
    )


class DigestService:
    def __init__(
        self,
        staging: DigestStagingRepository,
        messages: MessageRepository,
        deliveries: DeliveryRepository,
        registry: ChannelRegistry,
        renderer: TemplateRenderer,
        queue: JobQueue,
        max_items: int = 50,
        max_attempts: int = 3,
        backoff_delay_ms: int = 2000,
    ):
        self.staging = staging
        self.messages = messages
        self.deliveries = deliveries
        self.registry = registry
        self.renderer = renderer
        self.queue = queue
        self.max_items = max_items
        self.max_attempts = max_attempts
        self.backoff_delay_ms = backoff_delay_ms

    def stage(self, entry: DigestStagingEntry) -> DigestStagingEntry:
        staged = self.staging.add(entry)
        logger.info(
            "digest_entry_staged",
            tenant_id=entry.tenant_id,
            recipient_id=entry.recipient_id,
            channel=entry.channel.value,
            frequency=entry.frequency.value,
            message_id=entry.message_id,
        )
        return staged

    def flush(self, frequency: Frequency, now: Optional[datetime] = None) -> FlushResult:
        """Send one digest per (tenant, recipient, channel) with pending entries.

        A group's entries are claimed (marked delivered) before its digest is
        created, and returned to pending if the hand-off fails, so a group
        that fails is sent by a later flush exactly once.
        """
        now = now or utc_now()
        result = FlushResult(frequency=frequency)

        groups: Dict[GroupKey, List[DigestStagingEntry]] = OrderedDict()
        for entry in self.staging.list_pending(frequency):
            groups.setdefault(
                (entry.tenant_id, entry.recipient_id, entry.channel), []
            ).append(entry)

        for key, entries in groups.items():
            try:
                message_id = self._flush_group(key, entries, frequency, now)
                if message_id is None:
                    continue
            except Exception as e:
                result.errors += 1
                logger.error(
                    "digest_group_flush_failed",
                    tenant_id=key[0],
                    recipient_id=key[1],
                    channel=key[2].value,
                    error=str(e),
                    exc_info=True,
                )
                continue
            result.recipients += 1
            result.entries += len(entries)
            result.message_ids.append(message_id)

        logger.info(
            "digest_flush_completed",
            frequency=frequency.value,
            recipients=result.recipients,
            entries=result.entries,
            errors=result.errors,
        )
        return result

    def cleanup(self, retention_days: int, now: Optional[datetime] = None) -> int:
        """Remove delivered entries older than retention_days."""
        cutoff = (now or utc_now()) - timedelta(days=retention_days)
        removed = self.staging.delete_delivered_before(cutoff)
        logger.info("digest_cleanup_completed", removed=removed, cutoff=cutoff.isoformat())
        return removed

    def _flush_group(
        self,
        key: GroupKey,
        entries: List[DigestStagingEntry],
        frequency: Frequency,
        now: datetime,
    ) -> Optional[str]:
        tenant_id, recipient_id, channel = key
        adapter = self.registry.get(channel)
        latest = entries[-1]
        shown = entries[: self.max_items]
        omitted = len(entries) - len(shown)

        rendered = self.renderer.render(
            DIGEST_TEMPLATE_KEY,
            {
                "count": len(entries),
                "frequency": frequency.value,
                "items": "\n".join(
                    f"- {entry.subject or entry.event_code}" for entry in shown
                ),
                "omitted": omitted,
            },
            channel,
        ) or fallback_digest(shown, omitted)

        entry_ids = [entry.id for entry in entries]
        message = NotificationMessage(
            tenant_id=tenant_id,
            rule_code=DIGEST_RULE_CODE,
            event_type=DIGEST_EVENT_TYPE,
            event_id=f"digest:{frequency.value}:{recipient_id}:{now.isoformat()}",
            template_key=DIGEST_TEMPLATE_KEY,
            priority=Priority.NORMAL,
            payload={"entry_ids": entry_ids, "frequency": frequency.value},
            status=MessageStatus.DELIVERING,
        )
        message.metadata["explain_trace"] = [
            build_step(
                ExplainPhase.DIGEST_FLUSH,
                Decision.PASSED,
                input={"frequency": frequency.value, "entries": len(entries)},
                output={"source_message_ids": [entry.message_id for entry in entries]},
            ).model_dump(mode="json")
        ]
        delivery = NotificationDelivery(
            tenant_id=tenant_id,
            message_id=message.id,
            channel=channel,
            provider_code=adapter.provider_code,
            recipient_id=recipient_id,
            recipient_addr=latest.recipient_addr,
            max_attempts=self.max_attempts,
        )
        payload = DeliverNotificationPayload(
            tenant_id=tenant_id,
            message_id=message.id,
            delivery_id=delivery.id,
            channel=channel,
            provider_code=adapter.provider_code,
            recipient_id=recipient_id,
            recipient_addr=latest.recipient_addr,
            template_key=DIGEST_TEMPLATE_KEY,
            event_code=DIGEST_EVENT_TYPE,
            subject=rendered.subject,
            body_text=rendered.body_text,
            body_html=rendered.body_html,
            body_json=rendered.body_json,
            priority=Priority.NORMAL,
            digest=True,
        )
        delivery.payload = payload.model_dump(mode="json")

        if self.staging.mark_delivered(entry_ids, now) == 0:
            logger.info(
                "digest_group_already_claimed",
                tenant_id=tenant_id,
                recipient_id=recipient_id,
                channel=channel.value,
            )
            return None

        try:
            self.messages.create(message)
            self.deliveries.create_many([delivery])
            enqueue_delivery(self.queue, payload, backoff_delay_ms=self.backoff_delay_ms)
        except Exception:
            self._release_group(entry_ids, delivery)
            raise

        logger.info(
            "digest_sent_to_delivery",
            tenant_id=tenant_id,
            recipient_id=recipient_id,
            channel=channel.value,
            entries=len(entries),
            message_id=message.id,
        )
        return message.id

    def _release_group(
        self, entry_ids: List[str], delivery: NotificationDelivery
    ) -> None:
        """Return claimed entries to pending and cancel a digest delivery never enqueued."""
        run_non_critical("digest_entries_release", self.staging.mark_pending, entry_ids)
        run_non_critical("digest_delivery_cancel", self._cancel_delivery, delivery)

    def _cancel_delivery(self, delivery: NotificationDelivery) -> bool:
        stored = self.deliveries.get(delivery.tenant_id, delivery.id)
        if stored is None:
            return False
        stored.status = DeliveryStatus.CANCELLED
        stored.last_error = "Digest flush rolled back"
        return self.deliveries.update(stored, expected_status=DeliveryStatus.PENDING)
