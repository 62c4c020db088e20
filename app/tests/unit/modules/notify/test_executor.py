"""Unit tests for DeliveryExecutor.

Tests cover:
- Successful sends and message completion
- Retry scheduling, backoff and dead-lettering
- Preference re-checks at send time (blocked, re-routed, deferred)
- Content rendering fallback and adapter lookup failures
- Circuit breaker integration
- Provider status callbacks and conversation windows
- Stuck delivery sweeps
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from infrastructure.resilience import CircuitBreakerRegistry
from modules.notify.channels import ChannelRegistry
from modules.notify.domain import (
    CallbackError,
    ChannelCode,
    DeliverNotificationPayload,
    DeliveryNotFoundError,
    DeliveryResult,
    DeliveryStatus,
    ErrorCategory,
    Frequency,
    MessageStatus,
    ProcessCallbackPayload,
    SuppressionEntry,
    utc_now,
)
from modules.notify.executor import DeliveryExecutor, ExecutionOutcome
from modules.notify.preferences import PreferenceEvaluator, ScopedPreferenceResolver
from tests.factories.notify import (
    TENANT_ID,
    FakeAdapter,
    make_delivery,
    make_message,
    make_payload,
    make_preference,
    permanent_failure,
    transient_failure,
)

pytestmark = pytest.mark.unit

FUTURE_LATE_EVENING = datetime(2030, 1, 15, 23, 30, tzinfo=timezone.utc)


def _seed(stores, payload=None, **delivery_overrides):
    """Store the message and delivery a payload refers to."""
    payload = payload or make_payload()
    if stores.messages.get(payload.tenant_id, payload.message_id) is None:
        stores.messages.create(make_message(payload.message_id))
    stores.deliveries.create_many([make_delivery(payload, **delivery_overrides)])
    return payload


def _delivery(stores, delivery_id="delivery-1"):
    return stores.deliveries.get(TENANT_ID, delivery_id)


def _deliver_jobs(queue):
    return queue.get_waiting("deliver-notification")


@pytest.fixture
def published(event_bus):
    events = []
    event_bus.subscribe("*", events.append)
    return events


@pytest.fixture
def executor_factory(
    stores, registry, evaluator, digest_service, dlq_manager, queue, renderer, event_bus
):
    def _factory(**overrides):
        components = {
            "registry": registry,
            "evaluator": evaluator,
        }
        components.update(overrides)
        return DeliveryExecutor(
            stores.deliveries,
            stores.messages,
            components.pop("registry"),
            components.pop("evaluator"),
            digest_service,
            dlq_manager,
            queue,
            renderer,
            stores.suppressions,
            consents=stores.consents,
            event_bus=event_bus,
            **components,
        )

    return _factory


class TestExecuteSuccess:
    """Tests for successful deliveries."""

    def test_sent(self, executor, stores, email_adapter, published):
        payload = _seed(stores)

        outcome = executor.execute(payload)

        assert outcome == ExecutionOutcome.SENT
        delivery = _delivery(stores)
        assert delivery.status == DeliveryStatus.SENT
        assert delivery.external_id == "ext-1"
        assert delivery.attempt_count == 1
        assert delivery.sent_at is not None
        assert delivery.next_attempt_at is None

        request = email_adapter.requests[0]
        assert request.delivery_id == "delivery-1"
        assert request.recipient_addr == "alice@example.com"
        assert request.subject == "Order PO-42 approved"
        assert request.metadata["message_id"] == "message-1"

        message = stores.messages.get(TENANT_ID, "message-1")
        assert message.status == MessageStatus.COMPLETED
        assert message.delivered_count == 1
        assert [e.event_type for e in published] == ["notification.delivery.sent"]
        assert published[0].payload["delivery_id"] == "delivery-1"

    def test_accepts_job_payload_dict(self, executor, stores):
        payload = _seed(stores)

        assert executor.execute(payload.model_dump(mode="json")) == ExecutionOutcome.SENT

    def test_message_stays_open_while_deliveries_in_flight(self, executor, stores):
        first = _seed(stores)
        _seed(stores, make_payload(delivery_id="delivery-2", recipient_addr="bob@example.com"))

        executor.execute(first)

        assert stores.messages.get(TENANT_ID, "message-1").status == MessageStatus.PENDING

    def test_renders_when_payload_has_no_content(self, executor, stores, email_adapter):
        payload = _seed(
            stores,
            make_payload(
                subject=None,
                body_text=None,
                variables={"order_id": "PO-9", "recipient_name": "Alice"},
            ),
        )

        assert executor.execute(payload) == ExecutionOutcome.SENT

        request = email_adapter.requests[0]
        assert request.subject == "Order PO-9 approved"
        assert request.body_text == "Hello Alice, order PO-9 was approved."

    def test_missing_delivery_raises(self, executor):
        with pytest.raises(DeliveryNotFoundError):
            executor.execute(make_payload(delivery_id="missing"))

    def test_terminal_delivery_skipped(self, executor, stores, email_adapter):
        payload = _seed(stores, status=DeliveryStatus.SENT)

        assert executor.execute(payload) == ExecutionOutcome.SKIPPED
        assert email_adapter.requests == []


class TestExecuteFailures:
    """Tests for failed provider calls."""

    def test_transient_failure_schedules_retry(self, executor, stores, email_adapter, queue):
        email_adapter.results = [transient_failure()]
        payload = _seed(stores)

        outcome = executor.execute(payload)

        assert outcome == ExecutionOutcome.RETRY_SCHEDULED
        delivery = _delivery(stores)
        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.attempt_count == 1
        assert delivery.last_error == "Provider error (503)"
        assert delivery.error_category == ErrorCategory.TRANSIENT
        assert delivery.next_attempt_at is not None
        job = _deliver_jobs(queue)[0]
        assert job.options.delay_ms == 2000
        assert stores.dlq.list(TENANT_ID) == []

    def test_retry_then_success(self, executor, stores, email_adapter):
        email_adapter.results = [transient_failure()]
        payload = _seed(stores)

        executor.execute(payload)
        outcome = executor.execute(payload)

        assert outcome == ExecutionOutcome.SENT
        assert _delivery(stores).attempt_count == 2
        assert _delivery(stores).last_error is None

    def test_exhausted_attempts_dead_letter(self, executor, stores, email_adapter, published):
        email_adapter.default = transient_failure()
        payload = _seed(stores, max_attempts=2)

        assert executor.execute(payload) == ExecutionOutcome.RETRY_SCHEDULED
        assert executor.execute(payload) == ExecutionOutcome.DEAD_LETTERED

        delivery = _delivery(stores)
        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.attempt_count == 2
        entries = stores.dlq.list(TENANT_ID)
        assert len(entries) == 1
        assert entries[0].attempt_count == 2
        assert entries[0].error_category == ErrorCategory.TRANSIENT
        message = stores.messages.get(TENANT_ID, "message-1")
        assert message.status == MessageStatus.FAILED
        assert message.failed_count == 1
        assert published[-1].event_type == "notification.delivery.failed"

    def test_permanent_failure_not_retried(self, executor, stores, email_adapter, queue):
        email_adapter.results = [permanent_failure()]
        payload = _seed(stores)

        assert executor.execute(payload) == ExecutionOutcome.DEAD_LETTERED
        assert _deliver_jobs(queue) == []
        assert stores.dlq.list(TENANT_ID)[0].error_category == ErrorCategory.PERMANENT

    def test_auth_failure_not_retried(self, executor, stores, email_adapter):
        email_adapter.results = [DeliveryResult.failed(ErrorCategory.AUTH, "bad token")]
        payload = _seed(stores)

        assert executor.execute(payload) == ExecutionOutcome.DEAD_LETTERED

    def test_rate_limit_respects_retry_after(self, executor, stores, email_adapter, queue):
        email_adapter.results = [
            DeliveryResult.failed(ErrorCategory.RATE_LIMIT, "slow down", retry_after=30)
        ]
        payload = _seed(stores)

        assert executor.execute(payload) == ExecutionOutcome.RETRY_SCHEDULED
        assert _deliver_jobs(queue)[0].options.delay_ms == 30000

    def test_adapter_exception_is_transient(self, executor, stores, email_adapter):
        with patch.object(email_adapter, "deliver", side_effect=RuntimeError("socket closed")):
            outcome = executor.execute(_seed(stores))

        assert outcome == ExecutionOutcome.RETRY_SCHEDULED
        assert _delivery(stores).last_error == "RuntimeError: socket closed"

    def test_unknown_provider_dead_letters(self, executor, stores):
        payload = _seed(stores, make_payload(provider_code="retired"))

        assert executor.execute(payload) == ExecutionOutcome.DEAD_LETTERED
        assert "No channel adapter registered" in _delivery(stores).last_error

    def test_missing_template_dead_letters(self, executor, stores):
        payload = _seed(
            stores, make_payload(subject=None, body_text=None, template_key="order.unknown")
        )

        assert executor.execute(payload) == ExecutionOutcome.DEAD_LETTERED
        assert _delivery(stores).last_error == "No content rendered for template order.unknown"

    def test_dlq_write_failure_raises_and_redelivery_writes_it(
        self, executor, stores, email_adapter, published
    ):
        email_adapter.results = [permanent_failure()]
        payload = _seed(stores)

        with patch.object(stores.dlq, "create", side_effect=ConnectionError("db down")):
            with pytest.raises(ConnectionError):
                executor.execute(payload)

        delivery = _delivery(stores)
        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.dlq_pending
        assert stores.dlq.list(TENANT_ID) == []

        assert executor.execute(payload) == ExecutionOutcome.DEAD_LETTERED

        entries = stores.dlq.list(TENANT_ID)
        assert [entry.delivery_id for entry in entries] == ["delivery-1"]
        assert entries[0].last_error == "Provider error (400)"
        assert entries[0].error_category == ErrorCategory.PERMANENT
        assert not _delivery(stores).dlq_pending
        assert len(email_adapter.requests) == 1
        assert published[-1].event_type == "notification.delivery.failed"
        assert stores.messages.get(TENANT_ID, "message-1").status == MessageStatus.FAILED

    def test_written_dead_letter_is_not_repeated(self, executor, stores, email_adapter):
        email_adapter.results = [permanent_failure()]
        payload = _seed(stores)

        assert executor.execute(payload) == ExecutionOutcome.DEAD_LETTERED
        assert executor.execute(payload) == ExecutionOutcome.SKIPPED

        assert len(stores.dlq.list(TENANT_ID)) == 1
        assert len(email_adapter.requests) == 1


class TestRetryDelay:
    """Tests for DeliveryExecutor.retry_delay_ms()."""

    def test_exponential(self, executor):
        delays = [executor.retry_delay_ms(n, ErrorCategory.TRANSIENT) for n in (1, 2, 3, 4)]

        assert delays == [2000, 4000, 8000, 16000]

    def test_capped(self, executor_factory):
        executor = executor_factory(retry_base_delay_ms=1000, retry_max_delay_ms=5000)

        assert executor.retry_delay_ms(10, ErrorCategory.TRANSIENT) == 5000
        assert executor.retry_delay_ms(1, ErrorCategory.RATE_LIMIT, retry_after=3600) == 5000

    def test_retry_after_ignored_for_transient(self, executor):
        assert executor.retry_delay_ms(1, ErrorCategory.TRANSIENT, retry_after=30) == 2000


class TestPreferencesAtSend:
    """Tests for preferences re-checked before sending."""

    def test_suppressed_at_send_is_blocked(self, executor, stores, email_adapter):
        stores.suppressions.add(
            SuppressionEntry(
                tenant_id=TENANT_ID, channel=ChannelCode.EMAIL, address="alice@example.com"
            )
        )
        payload = _seed(stores)

        assert executor.execute(payload) == ExecutionOutcome.BLOCKED

        delivery = _delivery(stores)
        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.last_error == "suppressed"
        assert delivery.error_category == ErrorCategory.PERMANENT
        assert email_adapter.requests == []
        assert stores.dlq.list(TENANT_ID) == []
        steps = stores.messages.get(TENANT_ID, "message-1").explain_steps()
        assert steps[-1].phase == "preference_check"
        assert steps[-1].reason == "suppressed"

    def test_digest_preference_reroutes(self, executor, stores, email_adapter):
        stores.preferences.upsert(make_preference(frequency=Frequency.HOURLY_DIGEST))
        payload = _seed(stores)

        assert executor.execute(payload) == ExecutionOutcome.STAGED

        delivery = _delivery(stores)
        assert delivery.status == DeliveryStatus.CANCELLED
        assert delivery.last_error == "Re-routed to hourly_digest"
        pending = stores.digest_staging.list_pending(Frequency.HOURLY_DIGEST)
        assert len(pending) == 1
        assert pending[0].subject == "Order PO-42 approved"
        assert email_adapter.requests == []
        assert stores.messages.get(TENANT_ID, "message-1").status == MessageStatus.COMPLETED

    def test_digest_delivery_never_restaged(self, executor, stores, email_adapter):
        stores.preferences.upsert(make_preference(frequency=Frequency.HOURLY_DIGEST))
        payload = _seed(stores, make_payload(digest=True))

        assert executor.execute(payload) == ExecutionOutcome.SENT
        assert len(email_adapter.requests) == 1

    def test_quiet_hours_at_send_defers(self, executor_factory, stores, queue, email_adapter):
        stores.preferences.upsert(
            make_preference(
                quiet_hours={"enabled": True, "start": "22:00", "end": "07:00", "timezone": "UTC"}
            )
        )
        evaluator = PreferenceEvaluator(
            stores.preferences,
            stores.suppressions,
            scoped_resolver=ScopedPreferenceResolver(stores.preferences, stores.directory),
            clock=lambda: FUTURE_LATE_EVENING,
        )
        executor = executor_factory(evaluator=evaluator, clock=lambda: FUTURE_LATE_EVENING)
        payload = _seed(stores)

        assert executor.execute(payload) == ExecutionOutcome.DEFERRED

        delivery = _delivery(stores)
        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.attempt_count == 0
        assert delivery.next_attempt_at == datetime(2030, 1, 16, 7, 0, tzinfo=timezone.utc)
        assert _deliver_jobs(queue)[0].options.delay_ms == 7 * 3600 * 1000 + 30 * 60 * 1000
        assert email_adapter.requests == []


class TestCircuitBreaker:
    """Tests for deliveries through an open circuit breaker."""

    def test_open_breaker_short_circuits(self, executor_factory, stores):
        adapter = FakeAdapter(ChannelCode.EMAIL, default=transient_failure())
        breakers = CircuitBreakerRegistry(failure_threshold=1, timeout_seconds=60)
        registry = ChannelRegistry(breakers=breakers)
        registry.register(adapter)
        executor = executor_factory(registry=registry)
        first = _seed(stores)
        second = _seed(stores, make_payload(delivery_id="delivery-2"))

        executor.execute(first)
        outcome = executor.execute(second)

        assert outcome == ExecutionOutcome.RETRY_SCHEDULED
        assert len(adapter.requests) == 1
        assert "is OPEN" in _delivery(stores, "delivery-2").last_error
        assert breakers.get_open() == ["email:fake"]

    def test_permanent_failures_do_not_open_breaker(self, executor_factory, stores):
        adapter = FakeAdapter(ChannelCode.EMAIL, default=permanent_failure())
        breakers = CircuitBreakerRegistry(failure_threshold=1, timeout_seconds=60)
        registry = ChannelRegistry(breakers=breakers)
        registry.register(adapter)
        executor = executor_factory(registry=registry)

        executor.execute(_seed(stores))
        executor.execute(_seed(stores, make_payload(delivery_id="delivery-2")))

        assert len(adapter.requests) == 2
        assert breakers.get_open() == []


class TestProcessCallback:
    """Tests for DeliveryExecutor.process_callback()."""

    @pytest.fixture
    def sent(self, stores):
        return _seed(stores, status=DeliveryStatus.SENT, external_id="ext-1", attempt_count=1)

    def _callback(self, status, **overrides):
        fields = {"provider_code": "fake", "external_id": "ext-1", "status": status}
        fields.update(overrides)
        return ProcessCallbackPayload(**fields)

    def test_delivered(self, executor, stores, sent, published):
        at = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)

        assert executor.process_callback(self._callback("delivered", timestamp=at))

        delivery = _delivery(stores)
        assert delivery.status == DeliveryStatus.DELIVERED
        assert delivery.delivered_at == at
        assert published[-1].event_type == "notification.delivery.status"
        assert stores.messages.get(TENANT_ID, "message-1").status == MessageStatus.COMPLETED

    def test_accepts_dict(self, executor, sent):
        assert executor.process_callback(self._callback("DELIVERED").model_dump(mode="json"))

    def test_failed_goes_to_dlq(self, executor, stores, sent):
        callback = self._callback(
            "failed", errors=[CallbackError(code=131026, title="Message undeliverable")]
        )

        assert executor.process_callback(callback)

        delivery = _delivery(stores)
        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.last_error == "Message undeliverable"
        assert stores.dlq.list(TENANT_ID)[0].delivery_id == "delivery-1"

    def test_failed_callback_retried_after_dlq_write_error(self, executor, stores, sent):
        callback = self._callback("failed")

        with patch.object(stores.dlq, "create", side_effect=ConnectionError("db down")):
            with pytest.raises(ConnectionError):
                executor.process_callback(callback)

        assert _delivery(stores).status == DeliveryStatus.FAILED
        assert _delivery(stores).dlq_pending
        assert stores.dlq.list(TENANT_ID) == []

        assert executor.process_callback(callback)

        assert [e.delivery_id for e in stores.dlq.list(TENANT_ID)] == ["delivery-1"]
        assert not _delivery(stores).dlq_pending

    def test_bounce_suppresses_address(self, executor, stores, sent):
        assert executor.process_callback(self._callback("bounced"))

        assert _delivery(stores).status == DeliveryStatus.BOUNCED
        assert _delivery(stores).last_error == "Provider reported bounced"
        assert stores.suppressions.is_suppressed(TENANT_ID, ChannelCode.EMAIL, "alice@example.com")
        assert len(stores.dlq.list(TENANT_ID)) == 1

    def test_bounce_after_delivered(self, executor, stores, sent):
        executor.process_callback(self._callback("delivered"))

        assert executor.process_callback(self._callback("bounced"))
        assert _delivery(stores).status == DeliveryStatus.BOUNCED

    def test_no_backwards_transition(self, executor, stores, sent):
        executor.process_callback(self._callback("delivered"))

        assert not executor.process_callback(self._callback("failed"))
        assert _delivery(stores).status == DeliveryStatus.DELIVERED

    def test_read_receipt_recorded(self, executor, stores, sent):
        at = datetime(2026, 3, 10, 12, 5, tzinfo=timezone.utc)

        assert executor.process_callback(self._callback("read", timestamp=at))

        delivery = _delivery(stores)
        assert delivery.status == DeliveryStatus.SENT
        assert delivery.payload["metadata"]["read_at"] == at.isoformat()

    def test_unknown_status_ignored(self, executor, sent):
        assert not executor.process_callback(self._callback("warming_up"))

    def test_unknown_external_id(self, executor, sent):
        assert not executor.process_callback(self._callback("delivered", external_id="nope"))

    def test_other_provider_not_matched(self, executor, sent):
        assert not executor.process_callback(
            self._callback("delivered", provider_code="gc_notify")
        )

    def test_missing_fields(self, executor, sent):
        assert not executor.process_callback(ProcessCallbackPayload(provider_code="fake"))

    def test_incoming_message_refreshes_window(self, executor, stores):
        at = datetime(2030, 1, 15, 9, 0, tzinfo=timezone.utc)
        callback = ProcessCallbackPayload(
            provider_code="meta_cloud_api",
            kind="incoming",
            tenant_id=TENANT_ID,
            sender="15551230001",
            timestamp=at,
        )

        assert executor.process_callback(callback)

        consent = stores.consents.get(TENANT_ID, "+15551230001")
        assert consent.conversation_window_start == at
        assert consent.conversation_window_end == at + timedelta(hours=24)

    def test_incoming_without_tenant(self, executor):
        callback = ProcessCallbackPayload(
            provider_code="meta_cloud_api", kind="incoming", sender="15551230001"
        )

        assert not executor.process_callback(callback)


class TestSweepStuck:
    """Tests for DeliveryExecutor.sweep_stuck()."""

    def _stuck(self, stores, delivery_id="delivery-1", **overrides):
        old = utc_now() - timedelta(hours=2)
        fields = {"updated_at": old, "created_at": old}
        fields.update(overrides)
        return _seed(stores, make_payload(delivery_id=delivery_id), **fields)

    def test_requeue(self, executor, stores, queue):
        self._stuck(stores, status=DeliveryStatus.QUEUED, attempt_count=1)

        counts = executor.sweep_stuck(30, "requeue")

        assert counts == {"requeued": 1, "failed": 0, "dead_lettered": 0, "errors": 0}
        assert _delivery(stores).status == DeliveryStatus.PENDING
        assert len(_deliver_jobs(queue)) == 1

    def test_exhausted_deliveries_fail_even_when_requeueing(self, executor, stores):
        self._stuck(stores, status=DeliveryStatus.QUEUED, attempt_count=3, max_attempts=3)

        counts = executor.sweep_stuck(30, "requeue")

        assert counts["failed"] == 1
        assert _delivery(stores).status == DeliveryStatus.FAILED
        assert stores.dlq.list(TENANT_ID)[0].error_category == ErrorCategory.TRANSIENT

    def test_fail_action(self, executor, stores, queue):
        self._stuck(stores)

        counts = executor.sweep_stuck(30, "fail")

        assert counts == {"requeued": 0, "failed": 1, "dead_lettered": 0, "errors": 0}
        delivery = _delivery(stores)
        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.last_error == "Delivery stuck for over 30 minutes"
        assert _deliver_jobs(queue) == []

    def test_recent_and_scheduled_deliveries_left_alone(self, executor, stores):
        _seed(stores)
        self._stuck(
            stores, "delivery-2", next_attempt_at=utc_now() + timedelta(hours=1)
        )
        self._stuck(stores, "delivery-3", status=DeliveryStatus.SENT)

        assert executor.sweep_stuck(30, "fail") == {
            "requeued": 0,
            "failed": 0,
            "dead_lettered": 0,
            "errors": 0,
        }

    def test_dead_letter_failure_is_retried_by_next_sweep(self, executor, stores):
        self._stuck(stores, status=DeliveryStatus.QUEUED)

        with patch.object(stores.dlq, "create", side_effect=ConnectionError("db down")):
            first = executor.sweep_stuck(30, "fail")

        assert first["errors"] == 1
        assert _delivery(stores).status == DeliveryStatus.FAILED
        assert _delivery(stores).dlq_pending

        second = executor.sweep_stuck(30, "fail")

        assert second == {"requeued": 0, "failed": 0, "dead_lettered": 1, "errors": 0}
        entries = stores.dlq.list(TENANT_ID)
        assert [entry.delivery_id for entry in entries] == ["delivery-1"]
        assert entries[0].error_category == ErrorCategory.TRANSIENT
        assert not _delivery(stores).dlq_pending
        assert stores.messages.get(TENANT_ID, "message-1").status == MessageStatus.FAILED

    def test_invalid_action(self, executor):
        with pytest.raises(ValueError):
            executor.sweep_stuck(30, "ignore")
