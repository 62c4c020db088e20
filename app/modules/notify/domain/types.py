"""Enumerations shared across the notification pipeline."""

from enum import Enum


class ChannelCode(str, Enum):
    """Delivery medium."""

    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    CHAT = "chat"
    PUSH = "push"


class Priority(str, Enum):
    """Notification priority. CRITICAL bypasses quiet hours."""

    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


# Job queue priority (lower runs first)
PRIORITY_MAP = {
    Priority.CRITICAL: 1,
    Priority.HIGH: 5,
    Priority.NORMAL: 10,
    Priority.LOW: 20,
}


class Frequency(str, Enum):
    """How often a recipient wants to hear about an event."""

    IMMEDIATE = "immediate"
    HOURLY_DIGEST = "hourly_digest"
    DAILY_DIGEST = "daily_digest"
    WEEKLY_DIGEST = "weekly_digest"


class DeliveryStatus(str, Enum):
    """Lifecycle of a NotificationDelivery.

    pending -> queued -> sent -> delivered, with failed/bounced as terminal
    failures and cancelled for deliveries re-routed to a digest.
    """

    PENDING = "pending"
    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"
    CANCELLED = "cancelled"


TERMINAL_DELIVERY_STATUSES = frozenset(
    {
        DeliveryStatus.SENT,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.FAILED,
        DeliveryStatus.BOUNCED,
        DeliveryStatus.CANCELLED,
    }
)

IN_FLIGHT_DELIVERY_STATUSES = frozenset({DeliveryStatus.PENDING, DeliveryStatus.QUEUED})


class MessageStatus(str, Enum):
    """Aggregate status of a NotificationMessage over its deliveries."""

    PENDING = "pending"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class ErrorCategory(str, Enum):
    """Classification of a failed provider call."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"


RETRYABLE_ERROR_CATEGORIES = frozenset({ErrorCategory.TRANSIENT, ErrorCategory.RATE_LIMIT})


class Decision(str, Enum):
    """Outcome recorded by an explain step."""

    PASSED = "passed"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    STAGED = "staged"


class PreferenceScope(str, Enum):
    """Where an effective preference was resolved from."""

    USER = "user"
    ORG_UNIT = "org_unit"
    TENANT = "tenant"
    DEFAULT = "default"


class RecipientRuleType(str, Enum):
    """Kinds of abstract recipient selectors."""

    USER = "user"
    ROLE = "role"
    GROUP = "group"
    EVENT_FIELD = "event_field"


class BlockReason(str, Enum):
    """Reasons recorded when a recipient x channel pair is not delivered now."""

    PREFERENCE_DISABLED = "preference_disabled"
    SUPPRESSED = "suppressed"
    QUIET_HOURS_DEFERRED = "quiet_hours_deferred"
    NO_ADDRESS = "no_address"
    NO_RECIPIENTS = "no_recipients"
    DUPLICATE = "duplicate"
    NO_ADAPTER = "no_adapter"
    PREFERENCE_CHECK_FAILED = "preference_check_failed"


class JobType(str, Enum):
    """Job types produced and consumed by the pipeline."""

    PLAN_NOTIFICATION = "plan-notification"
    DELIVER_NOTIFICATION = "deliver-notification"
    PROCESS_CALLBACK = "process-callback"
    DIGEST_FLUSH = "digest-flush"


class ExplainPhase(str, Enum):
    """Decision points that append explain steps."""

    RULE_MATCH = "rule_match"
    RECIPIENT_RESOLUTION = "recipient_resolution"
    PREFERENCE_CHECK = "preference_check"
    QUIET_HOURS = "quiet_hours"
    DIGEST_STAGING = "digest_staging"
    DEDUP_CHECK = "dedup_check"
    DIGEST_FLUSH = "digest_flush"
    DELIVERY = "delivery"
