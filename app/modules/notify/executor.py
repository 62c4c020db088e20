"""Delivery execution.

Consumes deliver-notification jobs: re-checks preferences, calls the
channel adapter through its circuit breaker, and drives the delivery to
sent, a scheduled retry, or a terminal failure recorded in the DLQ.
Also applies provider status callbacks and sweeps stuck deliveries.
"""

from datetime import timedelta
from enum import Enum
from typing import Any, Dict, Optional, Union

from infrastructure.events import Event, EventBus
from infrastructure.logging import get_module_logger, redact_identifier
from infrastructure.queue import JobQueue
from infrastructure.resilience import run_non_critical
from modules.notify.channels import ChannelRegistry
from modules.notify.digest import DigestService
from modules.notify.dispatch import delay_until, enqueue_delivery
from modules.notify.dlq import DlqManager
from modules.notify.domain import (
    IN_FLIGHT_DELIVERY_STATUSES,
    RETRYABLE_ERROR_CATEGORIES,
    TERMINAL_DELIVERY_STATUSES,
    AdapterNotFoundError,
    Decision,
    DeliverNotificationPayload,
    DeliveryNotFoundError,
    DeliveryRequest,
    DeliveryResult,
    DeliveryStatus,
    DigestStagingEntry,
    ErrorCategory,
    ExplainPhase,
    Frequency,
    MessageStatus,
    NotificationDelivery,
    PreferenceCheckInput,
    ProcessCallbackPayload,
    SuppressionEntry,
    utc_now,
)
from modules.notify.explain import build_step
from modules.notify.persistence import (
    ConsentRepository,
    DeliveryRepository,
    MessageRepository,
    SuppressionRepository,
)
from modules.notify.preferences import PreferenceEvaluator
from modules.notify.templates import TemplateRenderer

logger = get_module_logger()

EVENT_DELIVERY_SENT = "notification.delivery.sent"
EVENT_DELIVERY_FAILED = "notification.delivery.failed"
EVENT_DELIVERY_STATUS = "notification.delivery.status"

STUCK_ACTIONS = ("requeue", "fail")

# Provider callback statuses that may move a delivery, and the statuses
# they may move it from
CALLBACK_TRANSITIONS = {
    "delivered": (
        DeliveryStatus.DELIVERED,
        {DeliveryStatus.PENDING, DeliveryStatus.QUEUED, DeliveryStatus.SENT},
    ),
    "failed": (
        DeliveryStatus.FAILED,
        {DeliveryStatus.PENDING, DeliveryStatus.QUEUED, DeliveryStatus.SENT},
    ),
    "bounced": (
        DeliveryStatus.BOUNCED,
        {
            DeliveryStatus.PENDING,
            DeliveryStatus.QUEUED,
            DeliveryStatus.SENT,
            DeliveryStatus.DELIVERED,
        },
    ),
}
ENGAGEMENT_STATUSES = ("read", "opened")


class ExecutionOutcome(str, Enum):
    SENT = "sent"
    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    STAGED = "staged"
    SKIPPED = "skipped"


class DeliveryExecutor:
    def __init__(
        self,
        deliveries: DeliveryRepository,
        messages: MessageRepository,
        registry: ChannelRegistry,
        evaluator: PreferenceEvaluator,
        digest: DigestService,
        dlq: DlqManager,
        queue: JobQueue,
        renderer: TemplateRenderer,
        suppressions: SuppressionRepository,
        consents: Optional[ConsentRepository] = None,
        event_bus: Optional[EventBus] = None,
        retry_base_delay_ms: int = 2000,
        retry_max_delay_ms: int = 3_600_000,
        conversation_window_hours: int = 24,
        clock=utc_now,
    ):
        self.deliveries = deliveries
        self.messages = messages
        self.registry = registry
        self.evaluator = evaluator
        self.digest = digest
        self.dlq = dlq
        self.queue = queue
        self.renderer = renderer
        self.suppressions = suppressions
        self.consents = consents
        self.event_bus = event_bus
        self.retry_base_delay_ms = retry_base_delay_ms
        self.retry_max_delay_ms = retry_max_delay_ms
        self.conversation_window_hours = conversation_window_hours
        self.clock = clock

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def execute(
        self, payload: Union[DeliverNotificationPayload, Dict[str, Any]]
    ) -> ExecutionOutcome:
        """Attempt one delivery.

        Raises:
            DeliveryNotFoundError: If the delivery row does not exist.
        """
        if not isinstance(payload, DeliverNotificationPayload):
            payload = DeliverNotificationPayload.model_validate(payload)

        delivery = self.deliveries.get(payload.tenant_id, payload.delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(payload.tenant_id, payload.delivery_id)

        if delivery.status in TERMINAL_DELIVERY_STATUSES:
            if delivery.dlq_pending:
                self._finish_dead_letter(payload, delivery)
                return ExecutionOutcome.DEAD_LETTERED
            logger.info(
                "delivery_already_terminal",
                delivery_id=delivery.id,
                status=delivery.status.value,
            )
            return ExecutionOutcome.SKIPPED

        gated = self._apply_preferences(payload, delivery)
        if gated is not None:
            return gated

        previous_status = delivery.status
        delivery.status = DeliveryStatus.QUEUED
        delivery.attempt_count += 1
        delivery.next_attempt_at = None
        if not self.deliveries.update(delivery, expected_status=previous_status):
            return ExecutionOutcome.SKIPPED

        result = self._send(payload, delivery)
        if result.success:
            return self._on_sent(payload, delivery, result)
        return self._on_failed(payload, delivery, result)

    def _apply_preferences(
        self, payload: DeliverNotificationPayload, delivery: NotificationDelivery
    ) -> Optional[ExecutionOutcome]:
        check = self.evaluator.check(
            PreferenceCheckInput(
                tenant_id=payload.tenant_id,
                principal_id=payload.recipient_id,
                event_code=payload.event_code,
                channel=payload.channel,
                recipient_addr=payload.recipient_addr,
                priority=payload.priority,
            )
        )
        pair = {"delivery_id": delivery.id, "channel": payload.channel.value}

        if not check.allowed:
            expected = delivery.status
            delivery.status = DeliveryStatus.FAILED
            delivery.last_error = check.reason
            delivery.error_category = ErrorCategory.PERMANENT
            if self.deliveries.update(delivery, expected_status=expected):
                self._record_step(
                    payload,
                    build_step(
                        ExplainPhase.PREFERENCE_CHECK,
                        Decision.BLOCKED,
                        input=pair,
                        reason=check.reason,
                    ),
                )
                self._complete_message(payload.tenant_id, payload.message_id)
            logger.info(
                "delivery_blocked_at_send",
                delivery_id=delivery.id,
                reason=check.reason,
            )
            return ExecutionOutcome.BLOCKED

        if check.frequency != Frequency.IMMEDIATE and not payload.digest:
            expected = delivery.status
            delivery.status = DeliveryStatus.CANCELLED
            delivery.last_error = f"Re-routed to {check.frequency.value}"
            if not self.deliveries.update(delivery, expected_status=expected):
                return ExecutionOutcome.SKIPPED
            self.digest.stage(
                DigestStagingEntry(
                    tenant_id=payload.tenant_id,
                    recipient_id=payload.recipient_id,
                    recipient_addr=payload.recipient_addr,
                    channel=payload.channel,
                    frequency=check.frequency,
                    message_id=payload.message_id,
                    event_code=payload.event_code,
                    subject=payload.subject,
                    body_text=payload.body_text,
                    template_key=payload.template_key,
                    priority=payload.priority,
                    payload=payload.variables,
                )
            )
            self._record_step(
                payload,
                build_step(
                    ExplainPhase.DIGEST_STAGING,
                    Decision.STAGED,
                    input=pair,
                    output={"frequency": check.frequency.value},
                ),
            )
            self._complete_message(payload.tenant_id, payload.message_id)
            return ExecutionOutcome.STAGED

        if check.is_deferred:
            delivery.next_attempt_at = check.defer_until
            self.deliveries.update(delivery)
            enqueue_delivery(
                self.queue,
                payload,
                delay_ms=delay_until(check.defer_until, self.clock()),
                backoff_delay_ms=self.retry_base_delay_ms,
            )
            self._record_step(
                payload,
                build_step(
                    ExplainPhase.QUIET_HOURS,
                    Decision.DEFERRED,
                    input=pair,
                    output={"defer_until": check.defer_until.isoformat()},
                    reason=check.reason,
                ),
            )
            return ExecutionOutcome.DEFERRED

        return None

    def _send(
        self, payload: DeliverNotificationPayload, delivery: NotificationDelivery
    ) -> DeliveryResult:
        content = payload
        if not payload.has_content:
            rendered = self.renderer.render(
                payload.template_key, payload.variables, payload.channel, payload.locale
            )
            if rendered is None:
                return DeliveryResult.failed(
                    ErrorCategory.PERMANENT,
                    f"No content rendered for template {payload.template_key}",
                )
            content = payload.model_copy(update=rendered.model_dump())

        try:
            adapter = self.registry.get(payload.channel, payload.provider_code)
        except AdapterNotFoundError as e:
            return DeliveryResult.failed(ErrorCategory.PERMANENT, str(e))

        request = DeliveryRequest(
            delivery_id=delivery.id,
            tenant_id=payload.tenant_id,
            recipient_id=payload.recipient_id,
            recipient_addr=payload.recipient_addr,
            subject=content.subject,
            body_text=content.body_text,
            body_html=content.body_html,
            body_json=content.body_json,
            metadata={**payload.metadata, "message_id": payload.message_id},
        )
        try:
            return self.registry.deliver(adapter, request)
        except Exception as e:
            logger.error(
                "channel_adapter_raised",
                delivery_id=delivery.id,
                adapter=adapter.key,
                error=str(e),
                exc_info=True,
            )
            return DeliveryResult.failed(
                ErrorCategory.TRANSIENT, f"{type(e).__name__}: {str(e)}"
            )

    def _on_sent(
        self,
        payload: DeliverNotificationPayload,
        delivery: NotificationDelivery,
        result: DeliveryResult,
    ) -> ExecutionOutcome:
        delivery.status = DeliveryStatus.SENT
        delivery.external_id = result.external_id
        delivery.sent_at = self.clock()
        delivery.last_error = None
        delivery.error_category = None
        self.deliveries.update(delivery, expected_status=DeliveryStatus.QUEUED)

        logger.info(
            "delivery_sent",
            delivery_id=delivery.id,
            channel=payload.channel.value,
            provider=payload.provider_code,
            recipient=redact_identifier(payload.recipient_addr),
            attempt=delivery.attempt_count,
            external_id=result.external_id,
        )
        self._publish(EVENT_DELIVERY_SENT, delivery)
        self._complete_message(payload.tenant_id, payload.message_id)
        return ExecutionOutcome.SENT

    def _on_failed(
        self,
        payload: DeliverNotificationPayload,
        delivery: NotificationDelivery,
        result: DeliveryResult,
    ) -> ExecutionOutcome:
        category = result.error_category or ErrorCategory.PERMANENT
        error = result.error or "Delivery failed"
        delivery.last_error = error
        delivery.error_category = category

        if (
            category in RETRYABLE_ERROR_CATEGORIES
            and delivery.attempt_count < delivery.max_attempts
        ):
            delay_ms = self.retry_delay_ms(delivery.attempt_count, category, result.retry_after)
            delivery.status = DeliveryStatus.PENDING
            delivery.next_attempt_at = self.clock() + timedelta(milliseconds=delay_ms)
            self.deliveries.update(delivery, expected_status=DeliveryStatus.QUEUED)
            enqueue_delivery(
                self.queue,
                payload,
                delay_ms=delay_ms,
                backoff_delay_ms=self.retry_base_delay_ms,
            )
            logger.warning(
                "delivery_retry_scheduled",
                delivery_id=delivery.id,
                channel=payload.channel.value,
                attempt=delivery.attempt_count,
                max_attempts=delivery.max_attempts,
                error_category=category.value,
                delay_ms=delay_ms,
                error=error,
            )
            return ExecutionOutcome.RETRY_SCHEDULED

        delivery.status = DeliveryStatus.FAILED
        delivery.dlq_pending = True
        if not self.deliveries.update(delivery, expected_status=DeliveryStatus.QUEUED):
            return ExecutionOutcome.SKIPPED
        logger.error(
            "delivery_failed",
            delivery_id=delivery.id,
            channel=payload.channel.value,
            attempt=delivery.attempt_count,
            error_category=category.value,
            error=error,
        )
        self._finish_dead_letter(payload, delivery)
        return ExecutionOutcome.DEAD_LETTERED

    def _finish_dead_letter(
        self, payload: DeliverNotificationPayload, delivery: NotificationDelivery
    ) -> None:
        """Write the DLQ record of a failed delivery, then publish and complete.

        A DLQ write error propagates with ``dlq_pending`` still set, so the
        retried job (or the stuck sweep) writes it later.
        """
        self._dead_letter(payload, delivery)
        self._publish(EVENT_DELIVERY_FAILED, delivery)
        self._complete_message(payload.tenant_id, payload.message_id)

    def retry_delay_ms(
        self,
        attempt: int,
        category: ErrorCategory,
        retry_after: Optional[int] = None,
    ) -> int:
        """Exponential backoff ``base * 2^(attempt-1)``, capped.

        A rate-limited attempt waits at least the provider's Retry-After.
        """
        delay = min(
            self.retry_base_delay_ms * (2 ** max(attempt - 1, 0)),
            self.retry_max_delay_ms,
        )
        if category == ErrorCategory.RATE_LIMIT and retry_after:
            delay = max(delay, min(retry_after * 1000, self.retry_max_delay_ms))
        return delay

    # ------------------------------------------------------------------
    # Provider callbacks
    # ------------------------------------------------------------------

    def process_callback(
        self, payload: Union[ProcessCallbackPayload, Dict[str, Any]]
    ) -> bool:
        """Apply a normalized provider callback. Returns True if anything changed."""
        if not isinstance(payload, ProcessCallbackPayload):
            payload = ProcessCallbackPayload.model_validate(payload)

        if payload.kind == "incoming":
            return self._refresh_conversation_window(payload)

        if not payload.external_id or not payload.status:
            logger.warning("callback_missing_fields", provider=payload.provider_code)
            return False

        delivery = self.deliveries.find_by_external_id(
            payload.provider_code, payload.external_id, payload.tenant_id
        )
        if delivery is None:
            logger.info(
                "callback_delivery_not_found",
                provider=payload.provider_code,
                external_id=payload.external_id,
            )
            return False

        if delivery.dlq_pending:
            self._finish_terminal_callback(payload, delivery)
            return True

        status = payload.status.lower()
        if status in ENGAGEMENT_STATUSES:
            receipts = delivery.payload.setdefault("metadata", {})
            receipts[f"{status}_at"] = payload.timestamp.isoformat()
            return self.deliveries.update(delivery)

        transition = CALLBACK_TRANSITIONS.get(status)
        if transition is None:
            logger.debug(
                "callback_status_ignored", delivery_id=delivery.id, status=status
            )
            return False

        target, allowed_from = transition
        if delivery.status not in allowed_from:
            logger.info(
                "callback_transition_ignored",
                delivery_id=delivery.id,
                current_status=delivery.status.value,
                callback_status=status,
            )
            return False

        expected = delivery.status
        delivery.status = target
        if target == DeliveryStatus.DELIVERED:
            delivery.delivered_at = payload.timestamp
        else:
            error = "; ".join(
                e.message or e.title or str(e.code) for e in payload.errors
            ) or f"Provider reported {status}"
            delivery.last_error = error
            delivery.error_category = ErrorCategory.PERMANENT
            delivery.dlq_pending = True

        if not self.deliveries.update(delivery, expected_status=expected):
            return False

        logger.info(
            "delivery_status_updated",
            delivery_id=delivery.id,
            provider=payload.provider_code,
            status=target.value,
        )
        if delivery.dlq_pending:
            self._finish_terminal_callback(payload, delivery)
            return True
        self._publish(EVENT_DELIVERY_STATUS, delivery)
        self._complete_message(delivery.tenant_id, delivery.message_id)
        return True

    def _finish_terminal_callback(
        self, payload: ProcessCallbackPayload, delivery: NotificationDelivery
    ) -> None:
        if delivery.status == DeliveryStatus.BOUNCED:
            self.suppressions.add(
                SuppressionEntry(
                    tenant_id=delivery.tenant_id,
                    channel=delivery.channel,
                    address=delivery.recipient_addr,
                    reason="bounced",
                    source=payload.provider_code,
                )
            )
        self._dead_letter(
            DeliverNotificationPayload.model_validate(delivery.payload), delivery
        )
        self._publish(EVENT_DELIVERY_STATUS, delivery)
        self._complete_message(delivery.tenant_id, delivery.message_id)

    def _refresh_conversation_window(self, payload: ProcessCallbackPayload) -> bool:
        if self.consents is None or not payload.sender or not payload.tenant_id:
            logger.info(
                "conversation_window_not_refreshed",
                provider=payload.provider_code,
                has_sender=bool(payload.sender),
            )
            return False
        sender = payload.sender if payload.sender.startswith("+") else f"+{payload.sender}"
        self.consents.refresh_conversation_window(
            payload.tenant_id,
            sender,
            payload.timestamp,
            payload.timestamp + timedelta(hours=self.conversation_window_hours),
        )
        logger.info(
            "conversation_window_refreshed",
            tenant_id=payload.tenant_id,
            sender=redact_identifier(sender),
        )
        return True

    # ------------------------------------------------------------------
    # Stuck delivery sweep
    # ------------------------------------------------------------------

    def sweep_stuck(self, older_than_minutes: int, action: str = "requeue") -> Dict[str, int]:
        """Requeue or fail pending/queued deliveries idle for older_than_minutes.

        Failed deliveries whose DLQ record could not be written are retried
        first.
        """
        if action not in STUCK_ACTIONS:
            raise ValueError(f"action must be one of {STUCK_ACTIONS}")

        cutoff = self.clock() - timedelta(minutes=older_than_minutes)
        counts = {"requeued": 0, "failed": 0, "dead_lettered": 0, "errors": 0}
        for delivery in self.deliveries.list_dlq_pending():
            try:
                self._dead_letter(
                    DeliverNotificationPayload.model_validate(delivery.payload), delivery
                )
            except Exception as e:
                counts["errors"] += 1
                logger.error(
                    "pending_dead_letter_failed",
                    delivery_id=delivery.id,
                    error=str(e),
                    exc_info=True,
                )
                continue
            self._complete_message(delivery.tenant_id, delivery.message_id)
            counts["dead_lettered"] += 1
        for delivery in self.deliveries.list_stuck(IN_FLIGHT_DELIVERY_STATUSES, cutoff):
            try:
                self._sweep_one(delivery, action, older_than_minutes, counts)
            except Exception as e:
                counts["errors"] += 1
                logger.error(
                    "stuck_delivery_sweep_failed",
                    delivery_id=delivery.id,
                    error=str(e),
                    exc_info=True,
                )
        if any(counts.values()):
            logger.warning("stuck_deliveries_swept", action=action, **counts)
        return counts

    def _sweep_one(
        self,
        delivery: NotificationDelivery,
        action: str,
        older_than_minutes: int,
        counts: Dict[str, int],
    ) -> None:
        payload = DeliverNotificationPayload.model_validate(delivery.payload)
        expected = delivery.status

        if action == "requeue" and delivery.attempt_count < delivery.max_attempts:
            delivery.status = DeliveryStatus.PENDING
            if self.deliveries.update(delivery, expected_status=expected):
                enqueue_delivery(
                    self.queue, payload, backoff_delay_ms=self.retry_base_delay_ms
                )
                counts["requeued"] += 1
            return

        delivery.status = DeliveryStatus.FAILED
        delivery.last_error = f"Delivery stuck for over {older_than_minutes} minutes"
        delivery.error_category = ErrorCategory.TRANSIENT
        delivery.dlq_pending = True
        if not self.deliveries.update(delivery, expected_status=expected):
            return
        self._dead_letter(payload, delivery)
        self._complete_message(delivery.tenant_id, delivery.message_id)
        counts["failed"] += 1

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _dead_letter(
        self, payload: DeliverNotificationPayload, delivery: NotificationDelivery
    ) -> None:
        # move_to_dlq is idempotent per delivery; errors propagate
        self.dlq.move_to_dlq(
            payload,
            delivery.last_error or "Delivery failed",
            delivery.error_category or ErrorCategory.PERMANENT,
            delivery.attempt_count,
        )
        delivery.dlq_pending = False
        self.deliveries.update(delivery)

    def _complete_message(self, tenant_id: str, message_id: str) -> None:
        run_non_critical(
            "message_completion", self._update_message_status, tenant_id, message_id
        )

    def _update_message_status(self, tenant_id: str, message_id: str) -> Optional[MessageStatus]:
        deliveries = self.deliveries.list_by_message(tenant_id, message_id)
        if any(d.status in IN_FLIGHT_DELIVERY_STATUSES for d in deliveries):
            return None

        delivered = sum(
            1 for d in deliveries if d.status in (DeliveryStatus.SENT, DeliveryStatus.DELIVERED)
        )
        failed = sum(
            1 for d in deliveries if d.status in (DeliveryStatus.FAILED, DeliveryStatus.BOUNCED)
        )
        if failed == 0:
            status = MessageStatus.COMPLETED
        elif delivered == 0:
            status = MessageStatus.FAILED
        else:
            status = MessageStatus.PARTIAL
        self.messages.update_status(tenant_id, message_id, status, delivered, failed)
        return status

    def _record_step(self, payload: DeliverNotificationPayload, step) -> None:
        run_non_critical(
            "explain_append",
            self.messages.append_explain_steps,
            payload.tenant_id,
            payload.message_id,
            [step],
        )

    def _publish(self, event_type: str, delivery: NotificationDelivery) -> None:
        if self.event_bus is None:
            return
        event = Event(
            event_type=event_type,
            tenant_id=delivery.tenant_id,
            payload={
                "delivery_id": delivery.id,
                "message_id": delivery.message_id,
                "channel": delivery.channel.value,
                "provider_code": delivery.provider_code,
                "status": delivery.status.value,
                "attempt_count": delivery.attempt_count,
                "error_category": (
                    delivery.error_category.value if delivery.error_category else None
                ),
            },
        )
        run_non_critical("event_publish", self.event_bus.publish, event)
