"""Unit tests for DlqManager."""

from unittest.mock import patch

import pytest

from modules.notify.domain import DeliverNotificationPayload, DeliveryStatus, ErrorCategory
from tests.factories.notify import TENANT_ID, make_payload

pytestmark = pytest.mark.unit


def _dead_letter(dlq_manager, delivery_id="delivery-1"):
    return dlq_manager.move_to_dlq(
        make_payload(delivery_id=delivery_id),
        "Provider error (400)",
        ErrorCategory.PERMANENT,
        attempt_count=1,
    )


class TestMoveToDlq:
    """Tests for DlqManager.move_to_dlq()."""

    def test_records_entry(self, dlq_manager):
        entry = _dead_letter(dlq_manager)

        stored = dlq_manager.inspect(TENANT_ID, entry.id)
        assert stored.delivery_id == "delivery-1"
        assert stored.error_category == ErrorCategory.PERMANENT
        assert stored.last_error == "Provider error (400)"
        assert stored.payload["recipient_addr"] == "alice@example.com"

    def test_idempotent_per_delivery(self, dlq_manager):
        first = _dead_letter(dlq_manager)
        second = _dead_letter(dlq_manager)

        assert first.id == second.id
        assert len(dlq_manager.list(TENANT_ID)) == 1

    def test_list_and_unreplayed_filter(self, dlq_manager):
        older = _dead_letter(dlq_manager, "delivery-1")
        newer = _dead_letter(dlq_manager, "delivery-2")
        dlq_manager.retry(TENANT_ID, older.id, "ops@example.com")

        assert {e.id for e in dlq_manager.list(TENANT_ID)} == {older.id, newer.id}
        assert [e.id for e in dlq_manager.list(TENANT_ID, unreplayed_only=True)] == [newer.id]

    def test_tenant_isolation(self, dlq_manager):
        entry = _dead_letter(dlq_manager)

        assert dlq_manager.inspect("tenant-2", entry.id) is None
        assert dlq_manager.list("tenant-2") == []


class TestRetry:
    """Tests for DlqManager.retry()."""

    def test_replay_creates_fresh_delivery(self, dlq_manager, stores, queue):
        entry = _dead_letter(dlq_manager)

        assert dlq_manager.retry(TENANT_ID, entry.id, "ops@example.com")

        job = queue.get_waiting("deliver-notification")[0]
        payload = DeliverNotificationPayload.model_validate(job.payload)
        assert payload.delivery_id != "delivery-1"
        assert payload.replay_of == entry.id
        assert job.options.attempts == 3

        delivery = stores.deliveries.get(TENANT_ID, payload.delivery_id)
        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.max_attempts == 3
        assert delivery.recipient_addr == "alice@example.com"

        replayed = dlq_manager.inspect(TENANT_ID, entry.id)
        assert replayed.replayed_by == "ops@example.com"
        assert replayed.replayed_at is not None
        assert replayed.replay_count == 1

    def test_unknown_entry(self, dlq_manager, queue):
        assert not dlq_manager.retry(TENANT_ID, "missing", "ops@example.com")
        assert queue.get_waiting() == []

    def test_new_failure_after_replay_gets_new_entry(self, dlq_manager):
        entry = _dead_letter(dlq_manager)
        dlq_manager.retry(TENANT_ID, entry.id, "ops@example.com")

        again = _dead_letter(dlq_manager)

        assert again.id != entry.id


class TestBulkReplay:
    """Tests for DlqManager.bulk_replay()."""

    def test_replays_unreplayed(self, dlq_manager, queue):
        for n in range(3):
            _dead_letter(dlq_manager, f"delivery-{n}")

        result = dlq_manager.bulk_replay(TENANT_ID, "ops@example.com")

        assert result.replayed == 3
        assert result.errors == 0
        assert len(queue.get_waiting("deliver-notification")) == 3
        assert dlq_manager.bulk_replay(TENANT_ID, "ops@example.com").replayed == 0

    def test_failures_do_not_stop_the_batch(self, dlq_manager):
        for n in range(3):
            _dead_letter(dlq_manager, f"delivery-{n}")
        calls = []
        original = dlq_manager.deliveries.create_many

        def flaky(deliveries):
            calls.append(deliveries)
            if len(calls) == 2:
                raise RuntimeError("db down")
            return original(deliveries)

        with patch.object(dlq_manager.deliveries, "create_many", side_effect=flaky):
            result = dlq_manager.bulk_replay(TENANT_ID, "ops@example.com")

        assert result.replayed == 2
        assert result.errors == 1
        assert len(dlq_manager.list(TENANT_ID, unreplayed_only=True)) == 1
