"""Shared fixtures for the notification orchestrator test suite."""

import pytest
import structlog

from infrastructure.configuration import Settings
from infrastructure.configuration.features import NotificationPipelineSettings
from infrastructure.configuration.infrastructure import DedupSettings, ServerSettings
from infrastructure.configuration.integrations import (
    NotifySettings,
    SlackSettings,
    WebPushSettings,
    WhatsAppSettings,
)


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Keep structlog context vars from leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def settings_factory():
    """Build a Settings instance with section overrides.

    Overrides use the environment variable names, e.g.::

        settings = settings_factory(
            notifications={"NOTIFY_PIPELINE_ENABLED_CHANNELS": "email"},
            whatsapp={"WHATSAPP_VERIFY_TOKEN": "verify-me"},
        )
    """
    sections = {
        "notify": NotifySettings,
        "slack": SlackSettings,
        "whatsapp": WhatsAppSettings,
        "web_push": WebPushSettings,
        "notifications": NotificationPipelineSettings,
        "server": ServerSettings,
        "dedup": DedupSettings,
    }

    def _factory(**overrides):
        kwargs = {}
        for name, values in overrides.items():
            if name in sections:
                kwargs[name] = sections[name](**values)
            else:
                kwargs[name] = values
        return Settings(**kwargs)

    return _factory


@pytest.fixture
def notify_settings():
    return NotifySettings(
        NOTIFY_SRE_USER_NAME="notify-orchestrator",
        NOTIFY_SRE_CLIENT_SECRET="client-secret",
        NOTIFY_API_URL="https://api.notification.example.com",
        NOTIFY_EMAIL_TEMPLATE_ID="email-template",
        NOTIFY_SMS_TEMPLATE_ID="sms-template",
    )
