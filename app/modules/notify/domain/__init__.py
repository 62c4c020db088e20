"""Notification domain: records, enums, job payloads and errors."""

from modules.notify.domain.errors import (
    AdapterNotFoundError,
    ConditionError,
    ConfigurationError,
    DeliveryNotFoundError,
    NotifyError,
    PlanningError,
)
from modules.notify.domain.models import (
    DeliveryRequest,
    DeliveryResult,
    DigestStagingEntry,
    DlqEntry,
    DomainEvent,
    EffectivePreference,
    ExplainStep,
    ExplainTrace,
    NotificationDelivery,
    NotificationMessage,
    NotificationRule,
    PreferenceCheckInput,
    PreferenceCheckResult,
    PreferenceRecord,
    Principal,
    PushSubscription,
    QuietHours,
    RecipientRule,
    RenderedTemplate,
    ResolvedRecipient,
    SuppressionEntry,
    WhatsAppConsent,
    new_id,
    stable_id,
    utc_now,
)
from modules.notify.domain.payloads import (
    CallbackError,
    DeliverNotificationPayload,
    DigestFlushPayload,
    PlanNotificationPayload,
    ProcessCallbackPayload,
)
from modules.notify.domain.types import (
    IN_FLIGHT_DELIVERY_STATUSES,
    PRIORITY_MAP,
    RETRYABLE_ERROR_CATEGORIES,
    TERMINAL_DELIVERY_STATUSES,
    BlockReason,
    ChannelCode,
    Decision,
    DeliveryStatus,
    ErrorCategory,
    ExplainPhase,
    Frequency,
    JobType,
    MessageStatus,
    PreferenceScope,
    Priority,
    RecipientRuleType,
)

__all__ = [
    "AdapterNotFoundError",
    "BlockReason",
    "CallbackError",
    "ChannelCode",
    "ConditionError",
    "ConfigurationError",
    "Decision",
    "DeliverNotificationPayload",
    "DeliveryNotFoundError",
    "DeliveryRequest",
    "DeliveryResult",
    "DeliveryStatus",
    "DigestFlushPayload",
    "DigestStagingEntry",
    "DlqEntry",
    "DomainEvent",
    "EffectivePreference",
    "ErrorCategory",
    "ExplainPhase",
    "ExplainStep",
    "ExplainTrace",
    "Frequency",
    "IN_FLIGHT_DELIVERY_STATUSES",
    "JobType",
    "MessageStatus",
    "NotificationDelivery",
    "NotificationMessage",
    "NotificationRule",
    "NotifyError",
    "PlanningError",
    "PRIORITY_MAP",
    "PlanNotificationPayload",
    "PreferenceCheckInput",
    "PreferenceCheckResult",
    "PreferenceRecord",
    "PreferenceScope",
    "Principal",
    "PushSubscription",
    "Priority",
    "ProcessCallbackPayload",
    "QuietHours",
    "RETRYABLE_ERROR_CATEGORIES",
    "RecipientRule",
    "RecipientRuleType",
    "RenderedTemplate",
    "ResolvedRecipient",
    "SuppressionEntry",
    "TERMINAL_DELIVERY_STATUSES",
    "WhatsAppConsent",
    "new_id",
    "stable_id",
    "utc_now",
]
