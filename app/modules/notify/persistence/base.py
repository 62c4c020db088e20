"""Repository interfaces consumed by the notification pipeline.

Storage technology is outside the pipeline: any backend implementing these
Protocols can be injected. Every write touches a single row scoped by
tenant; ``DeliveryRepository.update`` supports a conditional write on the
expected current status. Message, delivery and digest staging inserts
skip rows whose id is already stored, so a retried job can replay them.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Sequence

from modules.notify.domain import (
    ChannelCode,
    DeliveryStatus,
    DigestStagingEntry,
    DlqEntry,
    ExplainStep,
    Frequency,
    MessageStatus,
    NotificationDelivery,
    NotificationMessage,
    NotificationRule,
    PreferenceRecord,
    PreferenceScope,
    Principal,
    PushSubscription,
    SuppressionEntry,
    WhatsAppConsent,
)


class RuleRepository(Protocol):
    """Read access to notification rules."""

    def list_enabled(self, tenant_id: str, event_type: str) -> List[NotificationRule]:
        """Enabled rules for event_type owned by tenant_id or global (tenant_id None)."""
        ...


class MessageRepository(Protocol):
    def create(self, message: NotificationMessage) -> NotificationMessage: ...

    def get(self, tenant_id: str, message_id: str) -> Optional[NotificationMessage]: ...

    def find_by_event(
        self, tenant_id: str, event_id: str, rule_code: str
    ) -> Optional[NotificationMessage]:
        """Message already planned for (event, rule), if any."""
        ...

    def update_status(
        self,
        tenant_id: str,
        message_id: str,
        status: MessageStatus,
        delivered_count: Optional[int] = None,
        failed_count: Optional[int] = None,
    ) -> bool: ...

    def append_explain_steps(
        self, tenant_id: str, message_id: str, steps: Sequence[ExplainStep]
    ) -> None:
        """Append steps to metadata["explain_trace"]."""
        ...


class DeliveryRepository(Protocol):
    def create_many(
        self, deliveries: Sequence[NotificationDelivery]
    ) -> List[NotificationDelivery]: ...

    def get(self, tenant_id: str, delivery_id: str) -> Optional[NotificationDelivery]: ...

    def update(
        self,
        delivery: NotificationDelivery,
        expected_status: Optional[DeliveryStatus] = None,
    ) -> bool:
        """Persist delivery; with expected_status, only if the stored status matches."""
        ...

    def list_by_message(
        self, tenant_id: str, message_id: str
    ) -> List[NotificationDelivery]: ...

    def find_by_external_id(
        self, provider_code: str, external_id: str, tenant_id: Optional[str] = None
    ) -> Optional[NotificationDelivery]: ...

    def list_dlq_pending(self, limit: int = 100) -> List[NotificationDelivery]:
        """Terminal deliveries whose dead letter record is still owed."""
        ...

    def list_stuck(
        self, statuses: Iterable[DeliveryStatus], older_than: datetime, limit: int = 100
    ) -> List[NotificationDelivery]:
        """Deliveries in statuses not touched since older_than.

        Deliveries whose next_attempt_at is after older_than are waiting on a
        delayed job and are not stuck.
        """
        ...


class PreferenceRepository(Protocol):
    """Preference storage.

    ``find`` serves the scope hierarchy resolver; ``is_enabled`` and
    ``get_for_user_by_event`` serve the flat per-user table.
    """

    def find(
        self,
        tenant_id: str,
        scope: PreferenceScope,
        scope_id: str,
        event_code: str,
        channel: ChannelCode,
    ) -> Optional[PreferenceRecord]:
        """Most specific record at one scope (exact event/channel before wildcards)."""
        ...

    def is_enabled(
        self, tenant_id: str, principal_id: str, event_code: str, channel: ChannelCode
    ) -> bool: ...

    def get_for_user_by_event(
        self, tenant_id: str, principal_id: str, event_code: str
    ) -> List[PreferenceRecord]: ...

    def upsert(self, record: PreferenceRecord) -> PreferenceRecord: ...


class SuppressionRepository(Protocol):
    def is_suppressed(self, tenant_id: str, channel: ChannelCode, address: str) -> bool: ...

    def add(self, entry: SuppressionEntry) -> SuppressionEntry: ...


class DlqRepository(Protocol):
    def create(self, entry: DlqEntry) -> DlqEntry: ...

    def list(
        self, tenant_id: str, unreplayed_only: bool = False, limit: int = 100
    ) -> List[DlqEntry]: ...

    def get_by_id(self, tenant_id: str, entry_id: str) -> Optional[DlqEntry]: ...

    def find_unreplayed_by_delivery(
        self, tenant_id: str, delivery_id: str
    ) -> Optional[DlqEntry]: ...

    def mark_replayed(
        self, tenant_id: str, entry_id: str, replayed_by: str, replayed_at: datetime
    ) -> Optional[DlqEntry]: ...


class DigestStagingRepository(Protocol):
    def add(self, entry: DigestStagingEntry) -> DigestStagingEntry: ...

    def list_pending(self, frequency: Frequency) -> List[DigestStagingEntry]: ...

    def mark_delivered(self, entry_ids: Sequence[str], delivered_at: datetime) -> int:
        """Set delivered_at on entries that are still pending; returns rows changed."""
        ...

    def mark_pending(self, entry_ids: Sequence[str]) -> int:
        """Clear delivered_at, returning entries to the next flush; returns rows changed."""
        ...

    def delete_delivered_before(self, cutoff: datetime) -> int: ...


class ConsentRepository(Protocol):
    """WhatsApp opt-in state and conversation windows."""

    def get(self, tenant_id: str, phone: str) -> Optional[WhatsAppConsent]: ...

    def is_opted_in(self, tenant_id: str, phone: str) -> bool: ...

    def is_in_conversation_window(
        self, tenant_id: str, phone: str, now: datetime
    ) -> bool: ...

    def refresh_conversation_window(
        self, tenant_id: str, phone: str, start: datetime, end: datetime
    ) -> WhatsAppConsent: ...

    def set_opt_in(
        self, tenant_id: str, phone: str, opted_in: bool, at: datetime
    ) -> WhatsAppConsent: ...


class PushSubscriptionRepository(Protocol):
    def list_for_recipient(
        self, tenant_id: str, recipient_id: str
    ) -> List[PushSubscription]: ...

    def add(self, subscription: PushSubscription) -> PushSubscription: ...

    def remove(self, tenant_id: str, endpoint: str) -> None: ...


class Directory(Protocol):
    """Principal, role and group lookups."""

    def get_principal(self, tenant_id: str, principal_id: str) -> Optional[Principal]: ...

    def get_role_members(self, tenant_id: str, role: str) -> List[str]: ...

    def get_group_members(self, tenant_id: str, group_id: str) -> List[str]: ...
