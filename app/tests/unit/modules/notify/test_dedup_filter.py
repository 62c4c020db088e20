"""Unit tests for DedupFilter."""

from unittest.mock import patch

import pytest

from modules.notify.domain import ChannelCode
from tests.factories.notify import TENANT_ID

pytestmark = pytest.mark.unit


class TestDedupFilter:
    """Tests for DedupFilter.check_and_claim()."""

    def test_first_claim_wins(self, dedup_filter):
        first = dedup_filter.check_and_claim(
            TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL, 60000, owner="d-1"
        )
        second = dedup_filter.check_and_claim(
            TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL, 60000, owner="d-2"
        )

        assert not first.duplicate
        assert first.key is not None
        assert second.duplicate
        assert second.key == first.key
        assert second.existing_owner == "d-1"

    def test_zero_window_disables_dedup(self, dedup_filter):
        for owner in ("d-1", "d-2"):
            decision = dedup_filter.check_and_claim(
                TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL, 0, owner=owner
            )
            assert not decision.duplicate
            assert decision.key is None

    def test_key_scoped_by_channel_and_recipient(self, dedup_filter):
        dedup_filter.check_and_claim(
            TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL, 60000, owner="d-1"
        )

        other_channel = dedup_filter.check_and_claim(
            TENANT_ID, "alice", "order_approved", ChannelCode.SMS, 60000, owner="d-2"
        )
        other_recipient = dedup_filter.check_and_claim(
            TENANT_ID, "bob", "order_approved", ChannelCode.EMAIL, 60000, owner="d-3"
        )
        other_tenant = dedup_filter.check_and_claim(
            "tenant-2", "alice", "order_approved", ChannelCode.EMAIL, 60000, owner="d-4"
        )

        assert not other_channel.duplicate
        assert not other_recipient.duplicate
        assert not other_tenant.duplicate

    def test_window_expiry(self, dedup_filter):
        with patch("infrastructure.idempotency.memory.time") as mock_time:
            mock_time.monotonic.return_value = 1000.0
            dedup_filter.check_and_claim(
                TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL, 5000, owner="d-1"
            )

            mock_time.monotonic.return_value = 1006.0
            decision = dedup_filter.check_and_claim(
                TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL, 5000, owner="d-2"
            )

        assert not decision.duplicate

    def test_build_key_format(self, dedup_filter):
        key = dedup_filter.build_key(TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL)

        assert key.startswith(f"notify-dedup:delivery:{TENANT_ID}:")

    def test_same_owner_reclaim_is_not_duplicate(self, dedup_filter):
        first = dedup_filter.check_and_claim(
            TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL, 60000, owner="d-1"
        )
        again = dedup_filter.check_and_claim(
            TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL, 60000, owner="d-1"
        )

        assert not again.duplicate
        assert again.key == first.key

    def test_release_frees_the_key(self, dedup_filter):
        first = dedup_filter.check_and_claim(
            TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL, 60000, owner="d-1"
        )

        dedup_filter.release(first.key)
        decision = dedup_filter.check_and_claim(
            TENANT_ID, "alice", "order_approved", ChannelCode.EMAIL, 60000, owner="d-2"
        )

        assert not decision.duplicate
