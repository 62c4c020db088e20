"""Unit tests for the dedup key builder and index factory."""

from unittest.mock import MagicMock, patch

import pytest

from infrastructure.idempotency import (
    DedupKeyBuilder,
    InMemoryDedupIndex,
    create_dedup_index,
)
from infrastructure.idempotency.redis_index import RedisDedupIndex

pytestmark = pytest.mark.unit


class TestDedupKeyBuilder:
    """Tests for DedupKeyBuilder."""

    def test_key_keeps_scope_readable(self):
        key = DedupKeyBuilder("notify-dedup").build(
            "delivery", tenant_id="tenant-1", recipient_id="alice"
        )

        prefix, operation, tenant, digest = key.split(":")
        assert (prefix, operation, tenant) == ("notify-dedup", "delivery", "tenant-1")
        assert len(digest) == 16

    def test_component_order_does_not_matter(self):
        builder = DedupKeyBuilder("notify-dedup")

        first = builder.build("delivery", "tenant-1", recipient_id="alice", channel="email")
        second = builder.build("delivery", "tenant-1", channel="email", recipient_id="alice")

        assert first == second

    def test_components_change_key(self):
        builder = DedupKeyBuilder("notify-dedup")

        assert builder.build("delivery", "tenant-1", channel="email") != builder.build(
            "delivery", "tenant-1", channel="sms"
        )


class TestCreateDedupIndex:
    """Tests for create_dedup_index()."""

    def test_memory_backend(self):
        settings = MagicMock()
        settings.dedup.DEDUP_BACKEND = "memory"

        assert isinstance(create_dedup_index(settings), InMemoryDedupIndex)

    @patch("infrastructure.idempotency.redis_index.create_redis_client")
    def test_redis_backend(self, mock_create_client):
        settings = MagicMock()
        settings.dedup.DEDUP_BACKEND = "redis"
        settings.redis.REDIS_KEY_PREFIX = "notify"

        index = create_dedup_index(settings)

        assert isinstance(index, RedisDedupIndex)
        mock_create_client.assert_called_once_with(settings.redis)
