"""Channel adapters and the adapter registry."""

from modules.notify.channels.base import (
    ChannelAdapter,
    category_from_result,
    config_result,
    result_to_delivery,
)
from modules.notify.channels.chat import SlackChatAdapter
from modules.notify.channels.email import GCNotifyEmailAdapter
from modules.notify.channels.push import WebPushAdapter
from modules.notify.channels.registry import ChannelRegistry
from modules.notify.channels.sms import GCNotifySmsAdapter
from modules.notify.channels.whatsapp import WhatsAppAdapter

__all__ = [
    "ChannelAdapter",
    "ChannelRegistry",
    "GCNotifyEmailAdapter",
    "GCNotifySmsAdapter",
    "SlackChatAdapter",
    "WebPushAdapter",
    "WhatsAppAdapter",
    "category_from_result",
    "config_result",
    "result_to_delivery",
]
