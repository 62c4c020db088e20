"""Job payloads exchanged through the job queue.

Payloads are dumped with ``model_dump(mode="json")`` when enqueued and
validated again by the handler, so they survive any queue backend.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from modules.notify.domain.models import DomainEvent, utc_now
from modules.notify.domain.types import ChannelCode, Frequency, Priority


class PlanNotificationPayload(BaseModel):
    """Input of a plan-notification job."""

    event: DomainEvent


class DeliverNotificationPayload(BaseModel):
    """Input of a deliver-notification job.

    Self-contained: rendered content and template variables travel with the
    payload, so a dead-lettered payload can be replayed without the event.

    Attributes:
        digest: True for digest deliveries, which are never re-staged
        replay_of: DLQ entry id when this delivery is a replay
    """

    tenant_id: str
    message_id: str
    delivery_id: str
    channel: ChannelCode
    provider_code: str
    recipient_id: str
    recipient_addr: str
    template_key: str
    event_code: str = ""
    subject: Optional[str] = None
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    body_json: Optional[Dict[str, Any]] = None
    priority: Priority = Priority.NORMAL
    variables: Dict[str, Any] = Field(default_factory=dict)
    locale: Optional[str] = None
    digest: bool = False
    replay_of: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def has_content(self) -> bool:
        return any((self.subject, self.body_text, self.body_html, self.body_json))


class CallbackError(BaseModel):
    """Provider error detail attached to a status callback."""

    code: Optional[int] = None
    title: Optional[str] = None
    message: Optional[str] = None


class ProcessCallbackPayload(BaseModel):
    """Input of a process-callback job, normalized from a provider webhook.

    ``kind="status"`` carries a delivery receipt for ``external_id``;
    ``kind="incoming"`` records a message received from ``sender`` (used to
    refresh the conversation window).
    """

    provider_code: str
    kind: Literal["status", "incoming"] = "status"
    tenant_id: Optional[str] = None
    external_id: Optional[str] = None
    status: Optional[str] = None
    sender: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    errors: List[CallbackError] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict)


class DigestFlushPayload(BaseModel):
    """Input of a digest-flush job."""

    frequency: Frequency
