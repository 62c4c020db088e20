"""Notification pipeline records.

Uses Pydantic BaseModel for:
- Runtime validation of rules and events received from collaborators
- JSON-friendly dumps for job payloads and stored metadata
- Type safety with clear error messages
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from modules.notify.domain.types import (
    ChannelCode,
    Decision,
    DeliveryStatus,
    ErrorCategory,
    Frequency,
    MessageStatus,
    PreferenceScope,
    Priority,
    RecipientRuleType,
)

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


_STABLE_ID_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_DNS, "notify-orchestrator")


def stable_id(*parts: str) -> str:
    """Deterministic id derived from a record's natural key.

    A retried job rebuilding the same record gets the same id, so inserts
    can skip rows that already exist.
    """
    return str(uuid.uuid5(_STABLE_ID_NAMESPACE, "/".join(parts)))


# --------------------------------------------------------------------------
# Rules and events
# --------------------------------------------------------------------------


class RecipientRule(BaseModel):
    """Abstract recipient selector.

    Attributes:
        type: user, role, group, or event_field
        value: Principal id, role name, group id, or a dotted path into the
            event data (``data.approver_id``) for event_field
    """

    type: RecipientRuleType
    value: str = Field(..., min_length=1)


class NotificationRule(BaseModel):
    """A configured "when X happens, notify Y over Z" rule.

    Rules are read at plan time; the planner works on a copy so edits made
    afterwards do not change in-flight plans.

    Example:
        rule = NotificationRule(
            code="order_approved",
            event_type="order.approved",
            template_key="order.approved",
            channels=["email", "whatsapp"],
            recipient_rules=[{"type": "role", "value": "buyer"}],
            dedup_window_ms=300000,
        )
    """

    id: str = Field(default_factory=new_id)
    tenant_id: Optional[str] = None
    code: str = Field(..., min_length=1)
    event_type: str = Field(..., min_length=1)
    entity_type: Optional[str] = None
    lifecycle_state: Optional[str] = None
    condition_expr: Optional[Dict[str, Any]] = None
    template_key: str = Field(..., min_length=1)
    channels: List[ChannelCode] = Field(..., min_length=1)
    priority: Priority = Priority.NORMAL
    recipient_rules: List[RecipientRule] = Field(default_factory=list)
    sla_minutes: Optional[int] = Field(default=None, ge=0)
    dedup_window_ms: int = Field(default=0, ge=0)
    enabled: bool = True

    @field_validator("channels")
    @classmethod
    def validate_channels(cls, v: List[ChannelCode]) -> List[ChannelCode]:
        """Drop repeated channels, keeping order."""
        seen: List[ChannelCode] = []
        for channel in v:
            if channel not in seen:
                seen.append(channel)
        return seen


class DomainEvent(BaseModel):
    """An event emitted by another subsystem that may trigger notifications."""

    tenant_id: str = Field(..., min_length=1)
    event_type: str = Field(..., min_length=1)
    event_id: str = Field(default_factory=new_id)
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    lifecycle_state: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utc_now)


# --------------------------------------------------------------------------
# Recipients and preferences
# --------------------------------------------------------------------------


class Principal(BaseModel):
    """A person known to the directory, with their per-channel addresses."""

    principal_id: str
    tenant_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    chat_handle: Optional[str] = None
    org_unit_ids: List[str] = Field(default_factory=list)
    addresses: Dict[str, str] = Field(default_factory=dict)
    locale: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        """Validate E.164 phone format if provided."""
        if v is None:
            return v
        v = v.strip()
        if not v.startswith("+") or not v[1:].isdigit():
            raise ValueError(f"Phone number must be in E.164 format: {v}")
        if len(v) < 8 or len(v) > 16:
            raise ValueError(f"Phone number length invalid: {v}")
        return v


class ResolvedRecipient(BaseModel):
    """A concrete (principal, channel, address) tuple."""

    principal_id: str
    channel: ChannelCode
    address: str
    display_name: Optional[str] = None
    locale: Optional[str] = None


class QuietHours(BaseModel):
    """Daily window during which non-critical delivery is deferred.

    ``start``/``end`` are local "HH:MM" times in ``timezone``; the window
    wraps across midnight when start > end. The timezone is not validated
    here: an unknown zone is handled at evaluation time.
    """

    enabled: bool = False
    start: str = "22:00"
    end: str = "07:00"
    timezone: str = "UTC"

    @field_validator("start", "end")
    @classmethod
    def validate_hhmm(cls, v: str) -> str:
        if not _HHMM.match(v):
            raise ValueError(f"Time must be HH:MM (24h): {v}")
        return v


class PreferenceRecord(BaseModel):
    """A stored preference at one scope.

    ``event_code``/``channel`` of None apply to every event/channel.
    """

    tenant_id: str
    scope: PreferenceScope
    scope_id: str
    event_code: Optional[str] = None
    channel: Optional[ChannelCode] = None
    is_enabled: bool = True
    frequency: Frequency = Frequency.IMMEDIATE
    quiet_hours: Optional[QuietHours] = None


class EffectivePreference(BaseModel):
    """Computed preference for one principal x event x channel."""

    is_enabled: bool = True
    frequency: Frequency = Frequency.IMMEDIATE
    quiet_hours: Optional[QuietHours] = None
    resolved_from: PreferenceScope = PreferenceScope.DEFAULT


class SuppressionEntry(BaseModel):
    """An address that must not be contacted on a channel."""

    tenant_id: str
    channel: ChannelCode
    address: str
    reason: str = "manual"
    source: str = "manual"
    created_at: datetime = Field(default_factory=utc_now)


class PreferenceCheckInput(BaseModel):
    """Input of a preference check."""

    tenant_id: str
    principal_id: str
    event_code: str
    channel: ChannelCode
    recipient_addr: str
    priority: Priority = Priority.NORMAL


class PreferenceCheckResult(BaseModel):
    """Outcome of a preference check.

    ``allowed`` with ``defer_until`` set means "deliver, but not before".
    """

    allowed: bool
    reason: Optional[str] = None
    defer_until: Optional[datetime] = None
    frequency: Frequency = Frequency.IMMEDIATE
    resolved_from: PreferenceScope = PreferenceScope.DEFAULT

    @property
    def is_deferred(self) -> bool:
        return self.allowed and self.defer_until is not None


# --------------------------------------------------------------------------
# Messages, deliveries and traces
# --------------------------------------------------------------------------


class ExplainStep(BaseModel):
    """One decision point in the life of a notification."""

    phase: str
    timestamp: datetime = Field(default_factory=utc_now)
    input: Dict[str, Any] = Field(default_factory=dict)
    output: Dict[str, Any] = Field(default_factory=dict)
    decision: Decision
    reason: Optional[str] = None


class ExplainTrace(BaseModel):
    """Ordered decision path for one message."""

    message_id: str
    tenant_id: str
    rule_code: str
    event_type: str
    event_id: str
    steps: List[ExplainStep] = Field(default_factory=list)


class NotificationMessage(BaseModel):
    """One (event, rule) match: "this event should notify these people".

    ``metadata["explain_trace"]`` holds the planning-phase explain steps as
    JSON dumps.
    """

    id: str = Field(default_factory=new_id)
    tenant_id: str
    rule_code: str
    event_type: str
    event_id: str
    template_key: str
    priority: Priority = Priority.NORMAL
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: MessageStatus = MessageStatus.PENDING
    delivered_count: int = 0
    failed_count: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def explain_steps(self) -> List[ExplainStep]:
        """Planning-phase steps stored on the message."""
        return [
            ExplainStep.model_validate(step)
            for step in self.metadata.get("explain_trace", [])
        ]


class NotificationDelivery(BaseModel):
    """One (message, recipient, channel): the unit of work.

    ``next_attempt_at`` is set when the delivery waits on a delayed job
    (quiet hours or retry backoff) so the stuck sweep leaves it alone.
    ``dlq_pending`` marks a terminal failure whose dead letter record has
    not been written yet.
    """

    id: str = Field(default_factory=new_id)
    tenant_id: str
    message_id: str
    channel: ChannelCode
    provider_code: str
    recipient_id: str
    recipient_addr: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempt_count: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    last_error: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    external_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    dlq_pending: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    payload: Dict[str, Any] = Field(default_factory=dict)


class DigestStagingEntry(BaseModel):
    """A deferred delivery waiting for its digest flush."""

    id: str = Field(default_factory=new_id)
    tenant_id: str
    recipient_id: str
    recipient_addr: str
    channel: ChannelCode
    frequency: Frequency
    message_id: str
    event_code: str
    subject: Optional[str] = None
    body_text: Optional[str] = None
    template_key: str
    priority: Priority = Priority.NORMAL
    payload: Dict[str, Any] = Field(default_factory=dict)
    staged_at: datetime = Field(default_factory=utc_now)
    delivered_at: Optional[datetime] = None

    @field_validator("frequency")
    @classmethod
    def validate_frequency(cls, v: Frequency) -> Frequency:
        if v == Frequency.IMMEDIATE:
            raise ValueError("Immediate deliveries are never staged")
        return v


class DlqEntry(BaseModel):
    """Terminal failure record; ``payload`` is enough to replay the delivery."""

    id: str = Field(default_factory=new_id)
    tenant_id: str
    delivery_id: str
    message_id: str
    channel: ChannelCode
    provider_code: str
    recipient_id: str
    recipient_addr: str
    payload: Dict[str, Any]
    last_error: str
    error_category: ErrorCategory
    attempt_count: int = 0
    dead_at: datetime = Field(default_factory=utc_now)
    replayed_at: Optional[datetime] = None
    replayed_by: Optional[str] = None
    replay_count: int = 0


# --------------------------------------------------------------------------
# Templates and adapter contract
# --------------------------------------------------------------------------


class RenderedTemplate(BaseModel):
    """Output of the template renderer."""

    subject: Optional[str] = None
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    body_json: Optional[Dict[str, Any]] = None


class DeliveryRequest(BaseModel):
    """What a channel adapter receives for one send."""

    delivery_id: str
    tenant_id: str
    recipient_id: str
    recipient_addr: str
    subject: Optional[str] = None
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    body_json: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DeliveryResult(BaseModel):
    """What a channel adapter returns for one send."""

    success: bool
    status: DeliveryStatus
    external_id: Optional[str] = None
    error_category: Optional[ErrorCategory] = None
    error: Optional[str] = None
    retry_after: Optional[int] = None
    provider_response: Optional[Dict[str, Any]] = None

    @classmethod
    def sent(
        cls, external_id: Optional[str] = None, provider_response: Optional[Dict[str, Any]] = None
    ) -> "DeliveryResult":
        return cls(
            success=True,
            status=DeliveryStatus.SENT,
            external_id=external_id,
            provider_response=provider_response,
        )

    @classmethod
    def failed(
        cls,
        category: ErrorCategory,
        error: str,
        retry_after: Optional[int] = None,
        provider_response: Optional[Dict[str, Any]] = None,
    ) -> "DeliveryResult":
        return cls(
            success=False,
            status=DeliveryStatus.FAILED,
            error_category=category,
            error=error,
            retry_after=retry_after,
            provider_response=provider_response,
        )


# --------------------------------------------------------------------------
# Channel-specific collaborator records
# --------------------------------------------------------------------------


class WhatsAppConsent(BaseModel):
    """Opt-in state and customer service window of one phone number."""

    tenant_id: str
    phone: str
    opted_in: bool = False
    opted_in_at: Optional[datetime] = None
    opted_out_at: Optional[datetime] = None
    conversation_window_start: Optional[datetime] = None
    conversation_window_end: Optional[datetime] = None


class PushSubscription(BaseModel):
    """A browser push subscription registered by a recipient."""

    tenant_id: str
    recipient_id: str
    endpoint: str
    p256dh: Optional[str] = None
    auth: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
