"""Integration settings __init__ - exports all integration settings."""

from infrastructure.configuration.integrations.notify import NotifySettings
from infrastructure.configuration.integrations.slack import SlackSettings
from infrastructure.configuration.integrations.web_push import WebPushSettings
from infrastructure.configuration.integrations.whatsapp import WhatsAppSettings

__all__ = [
    "NotifySettings",
    "SlackSettings",
    "WebPushSettings",
    "WhatsAppSettings",
]
