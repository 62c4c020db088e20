"""Notification pipeline feature settings."""

import json
from typing import Annotated, Any, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import NoDecode
import structlog

from infrastructure.configuration.base import FeatureSettings

logger = structlog.stdlib.get_logger().bind(component="config.notifications")

CHANNEL_CODES = ("email", "sms", "whatsapp", "chat", "push")


def _parse_list(v: Optional[Any], name: str) -> List[str]:
    """Parse a list from a JSON array or a comma separated string."""
    if v is None:
        return []
    if isinstance(v, (list, tuple)):
        return [str(item).strip() for item in v if str(item).strip()]
    if isinstance(v, str):
        s = v.strip()
        if not s:
            return []
        if s.startswith("["):
            try:
                parsed = json.loads(s)
            except (json.JSONDecodeError, ValueError) as e:
                raise ValueError(f"Invalid {name} JSON: {e} (value: {s[:80]}...)") from e
            return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in s.split(",") if item.strip()]
    raise ValueError(f"{name} must be a JSON array or a comma separated string")


class NotificationPipelineSettings(FeatureSettings):
    """Configuration for planning, delivery, digests and the DLQ.

    Environment Variables:
        NOTIFY_PIPELINE_ENABLED_CHANNELS: Channels whose adapters are registered
        NOTIFY_PIPELINE_PLAN_EVENT_TYPES: Domain event types that trigger planning
            ("*" subscribes to every event)
        NOTIFY_PIPELINE_MAX_ATTEMPTS: Delivery attempts before dead-lettering
        NOTIFY_PIPELINE_RETRY_BASE_DELAY_MS: Base exponential backoff delay
        NOTIFY_PIPELINE_RETRY_MAX_DELAY_MS: Maximum backoff delay
        NOTIFY_PIPELINE_DEFAULT_LOCALE: Locale passed to the template renderer
        NOTIFY_PIPELINE_BATCH_CHECK_WORKERS: Threads for batch preference checks
        NOTIFY_PIPELINE_DIGEST_MAX_ITEMS: Items rendered in one digest message
        NOTIFY_PIPELINE_DIGEST_RETENTION_DAYS: Days delivered digest rows are kept
        NOTIFY_PIPELINE_STUCK_DELIVERY_MINUTES: Age after which pending/queued
            deliveries are considered stuck
        NOTIFY_PIPELINE_STUCK_DELIVERY_ACTION: 'requeue' or 'fail'
        NOTIFY_PIPELINE_CIRCUIT_BREAKER_ENABLED: Wrap adapters in circuit breakers
        NOTIFY_PIPELINE_CIRCUIT_BREAKER_FAILURE_THRESHOLD: Failures before opening
        NOTIFY_PIPELINE_CIRCUIT_BREAKER_TIMEOUT_SECONDS: Open state duration

    Exponential Backoff:
        Delay calculation: min(base_delay * (2 ^ (attempt - 1)), max_delay)

        Example with defaults (base=2000ms):
            Attempt 1 failed: retry in 2s
            Attempt 2 failed: retry in 4s
            Attempt 3 failed: dead-lettered (max_attempts=3)

    Example:
        ```python
        from infrastructure.services import get_settings

        settings = get_settings()

        max_attempts = settings.notifications.max_attempts
        ```
    """

    enabled_channels: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: list(CHANNEL_CODES),
        alias="NOTIFY_PIPELINE_ENABLED_CHANNELS",
    )
    plan_event_types: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["*"],
        alias="NOTIFY_PIPELINE_PLAN_EVENT_TYPES",
    )
    max_attempts: int = Field(default=3, alias="NOTIFY_PIPELINE_MAX_ATTEMPTS")
    retry_base_delay_ms: int = Field(
        default=2000, alias="NOTIFY_PIPELINE_RETRY_BASE_DELAY_MS"
    )
    retry_max_delay_ms: int = Field(
        default=3_600_000, alias="NOTIFY_PIPELINE_RETRY_MAX_DELAY_MS"
    )
    default_locale: str = Field(default="en", alias="NOTIFY_PIPELINE_DEFAULT_LOCALE")
    batch_check_workers: int = Field(
        default=8, alias="NOTIFY_PIPELINE_BATCH_CHECK_WORKERS"
    )
    digest_max_items: int = Field(default=50, alias="NOTIFY_PIPELINE_DIGEST_MAX_ITEMS")
    digest_retention_days: int = Field(
        default=30, alias="NOTIFY_PIPELINE_DIGEST_RETENTION_DAYS"
    )
    stuck_delivery_minutes: int = Field(
        default=30, alias="NOTIFY_PIPELINE_STUCK_DELIVERY_MINUTES"
    )
    stuck_delivery_action: str = Field(
        default="requeue", alias="NOTIFY_PIPELINE_STUCK_DELIVERY_ACTION"
    )
    circuit_breaker_enabled: bool = Field(
        default=True, alias="NOTIFY_PIPELINE_CIRCUIT_BREAKER_ENABLED"
    )
    circuit_breaker_failure_threshold: int = Field(
        default=5, alias="NOTIFY_PIPELINE_CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_breaker_timeout_seconds: int = Field(
        default=60, alias="NOTIFY_PIPELINE_CIRCUIT_BREAKER_TIMEOUT_SECONDS"
    )

    @field_validator("enabled_channels", mode="before")
    @classmethod
    def _parse_enabled_channels(cls, v: Optional[Any]) -> Any:
        """Parse NOTIFY_PIPELINE_ENABLED_CHANNELS and drop unknown codes."""
        channels = _parse_list(v, "NOTIFY_PIPELINE_ENABLED_CHANNELS")
        unknown = [c for c in channels if c not in CHANNEL_CODES]
        if unknown:
            logger.warning("unknown_channels_ignored", channels=unknown)
        return [c for c in channels if c in CHANNEL_CODES]

    @field_validator("plan_event_types", mode="before")
    @classmethod
    def _parse_plan_event_types(cls, v: Optional[Any]) -> Any:
        """Parse NOTIFY_PIPELINE_PLAN_EVENT_TYPES."""
        return _parse_list(v, "NOTIFY_PIPELINE_PLAN_EVENT_TYPES")

    @field_validator("max_attempts")
    @classmethod
    def _validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("NOTIFY_PIPELINE_MAX_ATTEMPTS must be at least 1")
        return v

    @field_validator("stuck_delivery_action")
    @classmethod
    def _validate_stuck_action(cls, v: str) -> str:
        if v not in ("requeue", "fail"):
            raise ValueError("NOTIFY_PIPELINE_STUCK_DELIVERY_ACTION must be 'requeue' or 'fail'")
        return v
