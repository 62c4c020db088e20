"""Unit tests for delivery job enqueueing."""

from datetime import datetime, timedelta, timezone

import pytest

from modules.notify.dispatch import DELIVER_JOB_ATTEMPTS, delay_until, enqueue_delivery
from modules.notify.domain import DeliverNotificationPayload, Priority
from tests.factories.notify import make_payload

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestDelayUntil:
    """Tests for delay_until()."""

    def test_unset(self):
        assert delay_until(None, NOW) == 0

    def test_future(self):
        assert delay_until(NOW + timedelta(minutes=5), NOW) == 300000

    def test_past_is_zero(self):
        assert delay_until(NOW - timedelta(seconds=1), NOW) == 0


class TestEnqueueDelivery:
    """Tests for enqueue_delivery()."""

    def test_job_options(self, queue):
        job_id = enqueue_delivery(
            queue, make_payload(), delay_ms=1500, attempts=2, backoff_delay_ms=500
        )

        job = queue.get(job_id)
        assert job.job_type == "deliver-notification"
        assert job.options.priority == 10
        assert job.options.attempts == 2
        assert job.options.delay_ms == 1500
        assert job.options.backoff.delay_ms == 500
        assert job.options.backoff.type == "exponential"

    @pytest.mark.parametrize(
        "priority,expected",
        [(Priority.CRITICAL, 1), (Priority.HIGH, 5), (Priority.LOW, 20)],
    )
    def test_priority_mapping(self, queue, priority, expected):
        job_id = enqueue_delivery(queue, make_payload(priority=priority))

        assert queue.get(job_id).options.priority == expected

    def test_negative_delay_clamped(self, queue):
        job_id = enqueue_delivery(queue, make_payload(), delay_ms=-10)

        assert queue.get(job_id).options.delay_ms == 0

    def test_payload_is_json_dump(self, queue):
        payload = make_payload(variables={"order_id": "PO-42"})

        job = queue.get(enqueue_delivery(queue, payload))

        assert job.payload["channel"] == "email"
        assert job.payload["priority"] == "normal"
        assert DeliverNotificationPayload.model_validate(job.payload) == payload

    def test_default_attempts_allow_handler_retries(self, queue):
        job_id = enqueue_delivery(queue, make_payload())

        assert queue.get(job_id).options.attempts == DELIVER_JOB_ATTEMPTS
        assert DELIVER_JOB_ATTEMPTS > 1
