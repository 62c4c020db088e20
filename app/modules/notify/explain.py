"""Explainability: the ordered "why did (or didn't) this person get it" trace.

Planning steps are stored on the message as ``metadata["explain_trace"]``.
Delivery outcomes are not stored as steps: they are derived from the
delivery rows when a trace is requested and appended after the stored
steps in the order the rows were created, so callbacks that touch a row
never reorder the trace.
"""

from typing import Any, Dict, Optional

from infrastructure.logging import get_module_logger
from modules.notify.domain import (
    Decision,
    DeliveryStatus,
    ExplainPhase,
    ExplainStep,
    ExplainTrace,
    NotificationDelivery,
)
from modules.notify.persistence import DeliveryRepository, MessageRepository

logger = get_module_logger()

DELIVERY_DECISIONS = {
    DeliveryStatus.SENT: Decision.PASSED,
    DeliveryStatus.DELIVERED: Decision.PASSED,
    DeliveryStatus.PENDING: Decision.DEFERRED,
    DeliveryStatus.QUEUED: Decision.DEFERRED,
}


def build_step(
    phase: ExplainPhase,
    decision: Decision,
    input: Optional[Dict[str, Any]] = None,
    output: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
) -> ExplainStep:
    return ExplainStep(
        phase=phase.value,
        decision=decision,
        input=input or {},
        output=output or {},
        reason=reason,
    )


def delivery_step(delivery: NotificationDelivery) -> ExplainStep:
    """Derived step describing the current state of one delivery."""
    decision = DELIVERY_DECISIONS.get(delivery.status, Decision.BLOCKED)
    return ExplainStep(
        phase=ExplainPhase.DELIVERY.value,
        timestamp=delivery.updated_at,
        input={
            "delivery_id": delivery.id,
            "recipient_id": delivery.recipient_id,
            "channel": delivery.channel.value,
            "provider_code": delivery.provider_code,
        },
        output={
            "status": delivery.status.value,
            "attempt_count": delivery.attempt_count,
            "external_id": delivery.external_id,
            "error_category": (
                delivery.error_category.value if delivery.error_category else None
            ),
        },
        decision=decision,
        reason=delivery.last_error if decision == Decision.BLOCKED else None,
    )


class ExplainService:
    """Read-only trace assembly."""

    def __init__(self, messages: MessageRepository, deliveries: DeliveryRepository):
        self.messages = messages
        self.deliveries = deliveries

    def explain(self, tenant_id: str, message_id: str) -> Optional[ExplainTrace]:
        message = self.messages.get(tenant_id, message_id)
        if message is None:
            logger.info("explain_message_not_found", tenant_id=tenant_id, message_id=message_id)
            return None

        steps = message.explain_steps()
        # recorded steps keep their order; delivery rows follow in creation order
        deliveries = sorted(
            self.deliveries.list_by_message(tenant_id, message_id),
            key=lambda delivery: (delivery.created_at, delivery.id),
        )
        steps.extend(delivery_step(delivery) for delivery in deliveries)

        return ExplainTrace(
            message_id=message.id,
            tenant_id=message.tenant_id,
            rule_code=message.rule_code,
            event_type=message.event_type,
            event_id=message.event_id,
            steps=steps,
        )
