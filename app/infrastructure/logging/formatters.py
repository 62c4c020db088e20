"""Custom log processors for structured logging.

This module provides processors used by the structlog pipeline to keep
recipient identifiers and credentials out of log output.

Usage:
    from infrastructure.logging.formatters import redact_identifier

    logger.info("delivery_sent", recipient=redact_identifier(phone))

Dependencies:
    - structlog processors
"""

from typing import Any, Iterable

REDACTED = "***"

# Sensitive field patterns that should be masked in logs
SENSITIVE_PATTERNS = frozenset(
    {
        "password",
        "secret",
        "token",
        "api_key",
        "apikey",
        "authorization",
        "credential",
        "private_key",
        "access_token",
        "vapid",
        "jwt",
        "bearer",
    }
)

# Fields carrying recipient addresses (phone numbers, emails, handles)
RECIPIENT_FIELDS = frozenset(
    {
        "recipient_addr",
        "recipient",
        "phone",
        "phone_number",
        "email",
        "to",
        "sender",
    }
)


def redact_identifier(value: Any, visible: int = 4) -> str:
    """Redact a recipient identifier, keeping only a trailing fragment.

    Values of ``visible`` characters or fewer are fully masked.

    Example:
        redact_identifier("+15551234567")  # "***4567"
        redact_identifier("1234")          # "***"
    """
    if value is None:
        return REDACTED
    text = str(value)
    if len(text) <= visible:
        return REDACTED
    return REDACTED + text[-visible:]


def add_app_info(app_name: str, app_version: str = "unknown"):
    """Create a processor that adds application info to log entries.

    Args:
        app_name: Name of the application.
        app_version: Version string for the application.

    Returns:
        A structlog processor function.
    """

    def processor(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict["app_name"] = app_name
        event_dict["app_version"] = app_version
        return event_dict

    return processor


def redact_recipients(fields: Iterable[str] = RECIPIENT_FIELDS, visible: int = 4):
    """Create a processor that redacts recipient identifiers in log entries.

    Acts as a safety net for call sites that log an address directly; the
    adapters already pass values through ``redact_identifier``. Values that
    are already redacted are left alone.

    Args:
        fields: Event dict keys holding recipient identifiers.
        visible: Number of trailing characters kept.

    Returns:
        A structlog processor function.
    """
    field_set = frozenset(fields)

    def processor(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        for key in field_set.intersection(event_dict.keys()):
            value = event_dict[key]
            if isinstance(value, str) and value.startswith(REDACTED):
                continue
            if value is not None:
                event_dict[key] = redact_identifier(value, visible)
        return event_dict

    return processor


def mask_sensitive_data(
    mask_value: str = "***REDACTED***",
    additional_patterns: frozenset[str] | None = None,
):
    """Create a processor that masks sensitive data in log entries.

    Detects and masks values for keys that contain sensitive patterns
    (case-insensitive matching).

    Args:
        mask_value: The string to replace sensitive values with.
        additional_patterns: Extra patterns to consider sensitive.

    Returns:
        A structlog processor function.
    """
    patterns = SENSITIVE_PATTERNS
    if additional_patterns:
        patterns = patterns | additional_patterns

    def processor(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        masked_dict = {}
        for key, value in event_dict.items():
            key_lower = key.lower()
            is_sensitive = any(pattern in key_lower for pattern in patterns)
            if is_sensitive and value is not None:
                masked_dict[key] = mask_value
            else:
                masked_dict[key] = value
        return masked_dict

    return processor


def truncate_large_values(max_length: int = 500):
    """Create a processor that truncates overly large string values.

    Provider error bodies can be large; this keeps log lines bounded.

    Args:
        max_length: Maximum string length before truncation.

    Returns:
        A structlog processor function.
    """

    def processor(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        for key, value in event_dict.items():
            if isinstance(value, str) and len(value) > max_length:
                event_dict[key] = (
                    value[:max_length] + f"...[truncated, {len(value)} chars total]"
                )
        return event_dict

    return processor
