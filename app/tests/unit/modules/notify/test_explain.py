"""Unit tests for the explain trace."""

from datetime import timedelta

import pytest

from modules.notify.domain import (
    Decision,
    DeliveryStatus,
    ErrorCategory,
    ExplainPhase,
    utc_now,
)
from modules.notify.explain import ExplainService, build_step, delivery_step
from tests.factories.notify import TENANT_ID, make_delivery, make_message, make_payload

pytestmark = pytest.mark.unit


class TestDeliveryStep:
    """Tests for delivery_step()."""

    @pytest.mark.parametrize(
        "status,decision",
        [
            (DeliveryStatus.SENT, Decision.PASSED),
            (DeliveryStatus.DELIVERED, Decision.PASSED),
            (DeliveryStatus.PENDING, Decision.DEFERRED),
            (DeliveryStatus.QUEUED, Decision.DEFERRED),
            (DeliveryStatus.FAILED, Decision.BLOCKED),
            (DeliveryStatus.BOUNCED, Decision.BLOCKED),
            (DeliveryStatus.CANCELLED, Decision.BLOCKED),
        ],
    )
    def test_decision_by_status(self, status, decision):
        step = delivery_step(make_delivery(make_payload(), status=status))

        assert step.phase == "delivery"
        assert step.decision == decision

    def test_failure_reason(self):
        delivery = make_delivery(
            make_payload(),
            status=DeliveryStatus.FAILED,
            last_error="Provider error (400)",
            error_category=ErrorCategory.PERMANENT,
            attempt_count=1,
        )

        step = delivery_step(delivery)

        assert step.reason == "Provider error (400)"
        assert step.output["error_category"] == "permanent"
        assert step.input["delivery_id"] == "delivery-1"

    def test_no_reason_when_sent(self):
        delivery = make_delivery(
            make_payload(), status=DeliveryStatus.SENT, last_error="old error"
        )

        assert delivery_step(delivery).reason is None


class TestExplainService:
    """Tests for ExplainService.explain()."""

    def test_unknown_message(self, stores):
        assert ExplainService(stores.messages, stores.deliveries).explain(TENANT_ID, "nope") is None

    def test_other_tenant_cannot_read(self, stores):
        stores.messages.create(make_message())

        assert (
            ExplainService(stores.messages, stores.deliveries).explain("tenant-2", "message-1")
            is None
        )

    def test_merges_planning_and_delivery_steps(self, stores):
        started = utc_now() - timedelta(minutes=5)
        stores.messages.create(make_message())
        rule_step = build_step(ExplainPhase.RULE_MATCH, Decision.PASSED)
        rule_step.timestamp = started
        check_step = build_step(
            ExplainPhase.PREFERENCE_CHECK, Decision.BLOCKED, reason="suppressed"
        )
        check_step.timestamp = started + timedelta(seconds=1)
        stores.messages.append_explain_steps(TENANT_ID, "message-1", [rule_step, check_step])
        stores.deliveries.create_many(
            [make_delivery(make_payload(), status=DeliveryStatus.SENT)]
        )

        trace = ExplainService(stores.messages, stores.deliveries).explain(
            TENANT_ID, "message-1"
        )

        assert trace.rule_code == "order_approved"
        assert trace.event_id == "event-1"
        assert [step.phase for step in trace.steps] == [
            "rule_match",
            "preference_check",
            "delivery",
        ]
        assert trace.steps[1].reason == "suppressed"
        assert trace.steps[2].decision == Decision.PASSED

    def test_delivery_updates_do_not_reorder_trace(self, stores):
        created = utc_now() - timedelta(minutes=5)
        stores.messages.create(make_message())
        stores.deliveries.create_many(
            [
                make_delivery(make_payload("delivery-1"), created_at=created),
                make_delivery(
                    make_payload("delivery-2", recipient_id="bob"),
                    created_at=created + timedelta(seconds=1),
                ),
            ]
        )
        plan_step = build_step(ExplainPhase.RULE_MATCH, Decision.PASSED)
        plan_step.timestamp = created + timedelta(minutes=1)
        stores.messages.append_explain_steps(TENANT_ID, "message-1", [plan_step])
        # a late callback touches the first delivery
        first = stores.deliveries.get(TENANT_ID, "delivery-1")
        first.status = DeliveryStatus.DELIVERED
        first.updated_at = utc_now() + timedelta(minutes=10)
        stores.deliveries.update(first)

        trace = ExplainService(stores.messages, stores.deliveries).explain(
            TENANT_ID, "message-1"
        )

        assert [step.phase for step in trace.steps] == ["rule_match", "delivery", "delivery"]
        assert [step.input["delivery_id"] for step in trace.steps[1:]] == [
            "delivery-1",
            "delivery-2",
        ]
