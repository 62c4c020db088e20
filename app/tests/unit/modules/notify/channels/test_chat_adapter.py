"""Unit tests for SlackChatAdapter."""

from unittest.mock import MagicMock

import pytest
from slack_sdk.errors import SlackApiError

from infrastructure.configuration.integrations import SlackSettings
from modules.notify.channels.chat import SlackChatAdapter
from modules.notify.domain import DeliveryRequest, ErrorCategory

pytestmark = pytest.mark.unit


def _slack_error(error, status_code=200, headers=None):
    response = MagicMock()
    response.get.side_effect = lambda key, default=None: (
        error if key == "error" else default
    )
    response.status_code = status_code
    response.headers = headers or {}
    return SlackApiError(f"The request to the Slack API failed: {error}", response)


def _chat(**overrides):
    fields = {
        "delivery_id": "delivery-1",
        "tenant_id": "tenant-1",
        "recipient_id": "alice",
        "recipient_addr": "U-ALICE",
        "subject": "Order PO-42 approved",
        "body_text": "Your order was approved.",
    }
    fields.update(overrides)
    return DeliveryRequest(**fields)


@pytest.fixture
def client():
    client = MagicMock()
    client.chat_postMessage.return_value = {"ok": True, "ts": "1773144000.000100", "channel": "D123"}
    return client


@pytest.fixture
def adapter(client):
    manager = MagicMock()
    manager.get_client.return_value = client
    return SlackChatAdapter(SlackSettings(SLACK_TOKEN="xoxb-test"), client_manager=manager)


class TestSlackChatAdapter:
    """Tests for SlackChatAdapter.deliver()."""

    def test_send_success(self, adapter, client):
        result = adapter.deliver(_chat())

        assert result.success
        assert result.external_id == "1773144000.000100"
        client.chat_postMessage.assert_called_once_with(
            channel="U-ALICE",
            text="*Order PO-42 approved*\n\nYour order was approved.",
        )

    def test_blocks_passed_through(self, adapter, client):
        blocks = [{"type": "section", "text": {"type": "mrkdwn", "text": "hi"}}]

        adapter.deliver(_chat(body_json={"blocks": blocks}))

        assert client.chat_postMessage.call_args.kwargs["blocks"] == blocks

    def test_empty_message_placeholder(self, adapter, client):
        adapter.deliver(_chat(subject=None, body_text=None))

        assert client.chat_postMessage.call_args.kwargs["text"] == "(No content)"

    def test_missing_token(self, client):
        manager = MagicMock()
        adapter = SlackChatAdapter(SlackSettings(SLACK_TOKEN=""), client_manager=manager)

        result = adapter.deliver(_chat())

        assert result.error_category == ErrorCategory.AUTH
        manager.get_client.assert_not_called()

    @pytest.mark.parametrize(
        "error,category",
        [
            ("channel_not_found", ErrorCategory.PERMANENT),
            ("invalid_auth", ErrorCategory.AUTH),
            ("internal_error", ErrorCategory.TRANSIENT),
        ],
    )
    def test_api_errors(self, adapter, client, error, category):
        client.chat_postMessage.side_effect = _slack_error(error)

        assert adapter.deliver(_chat()).error_category == category

    def test_rate_limited(self, adapter, client):
        client.chat_postMessage.side_effect = _slack_error(
            "ratelimited", status_code=429, headers={"Retry-After": "12"}
        )

        result = adapter.deliver(_chat())

        assert result.error_category == ErrorCategory.RATE_LIMIT
        assert result.retry_after == 12

    def test_connection_error_is_transient(self, adapter, client):
        client.chat_postMessage.side_effect = ConnectionError("reset by peer")

        assert adapter.deliver(_chat()).error_category == ErrorCategory.TRANSIENT


class TestHealthCheck:
    """Tests for SlackChatAdapter.health_check()."""

    def test_healthy(self, adapter, client):
        client.auth_test.return_value = {"ok": True, "team": "acme", "user": "notify-bot"}

        result = adapter.health_check()

        assert result.is_success
        assert result.data == {"team": "acme", "user": "notify-bot"}

    def test_auth_test_not_ok(self, adapter, client):
        client.auth_test.return_value = {"ok": False, "error": "account_inactive"}

        result = adapter.health_check()

        assert not result.is_success
        assert result.error_code == "account_inactive"

    def test_auth_test_raises(self, adapter, client):
        client.auth_test.side_effect = _slack_error("invalid_auth")

        assert not adapter.health_check().is_success

    def test_unconfigured(self):
        adapter = SlackChatAdapter(SlackSettings(SLACK_TOKEN=""), client_manager=MagicMock())

        assert adapter.health_check().error_code == "INVALID_CONFIG"
