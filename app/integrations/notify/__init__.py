"""GC Notify API client helpers used by the email and SMS adapters."""

from .client import (
    epoch_seconds,
    create_jwt_token,
    create_authorization_header,
    post_notification,
    parse_error_message,
)

__all__ = [
    "epoch_seconds",
    "create_jwt_token",
    "create_authorization_header",
    "post_notification",
    "parse_error_message",
]
