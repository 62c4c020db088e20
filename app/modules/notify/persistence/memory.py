"""Thread-safe in-memory repositories.

Every read returns a deep copy so callers cannot mutate stored rows
without going through an update. Used for tests and single-process
deployments; durable backends implement the Protocols in ``base``.
"""

import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from infrastructure.logging import get_module_logger
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
    utc_now,
)

logger = get_module_logger()


class InMemoryRuleRepository:
    def __init__(self, rules: Optional[Sequence[NotificationRule]] = None):
        self._rules: List[NotificationRule] = []
        self._lock = threading.Lock()
        for rule in rules or []:
            self.add(rule)

    def add(self, rule: NotificationRule) -> NotificationRule:
        with self._lock:
            self._rules.append(rule.model_copy(deep=True))
        return rule

    def list_enabled(self, tenant_id: str, event_type: str) -> List[NotificationRule]:
        with self._lock:
            return [
                rule.model_copy(deep=True)
                for rule in self._rules
                if rule.enabled
                and rule.event_type == event_type
                and rule.tenant_id in (None, tenant_id)
            ]


class InMemoryMessageRepository:
    def __init__(self):
        self._messages: Dict[str, NotificationMessage] = {}
        self._lock = threading.Lock()

    def create(self, message: NotificationMessage) -> NotificationMessage:
        with self._lock:
            self._messages.setdefault(message.id, message.model_copy(deep=True))
        return message

    def get(self, tenant_id: str, message_id: str) -> Optional[NotificationMessage]:
        with self._lock:
            message = self._messages.get(message_id)
            if message is None or message.tenant_id != tenant_id:
                return None
            return message.model_copy(deep=True)

    def find_by_event(
        self, tenant_id: str, event_id: str, rule_code: str
    ) -> Optional[NotificationMessage]:
        with self._lock:
            for message in self._messages.values():
                if (
                    message.tenant_id == tenant_id
                    and message.event_id == event_id
                    and message.rule_code == rule_code
                ):
                    return message.model_copy(deep=True)
        return None

    def update_status(
        self,
        tenant_id: str,
        message_id: str,
        status: MessageStatus,
        delivered_count: Optional[int] = None,
        failed_count: Optional[int] = None,
    ) -> bool:
        with self._lock:
            message = self._messages.get(message_id)
            if message is None or message.tenant_id != tenant_id:
                return False
            message.status = status
            if delivered_count is not None:
                message.delivered_count = delivered_count
            if failed_count is not None:
                message.failed_count = failed_count
            message.updated_at = utc_now()
            return True

    def append_explain_steps(
        self, tenant_id: str, message_id: str, steps: Sequence[ExplainStep]
    ) -> None:
        with self._lock:
            message = self._messages.get(message_id)
            if message is None or message.tenant_id != tenant_id:
                logger.warning(
                    "explain_append_message_missing",
                    tenant_id=tenant_id,
                    message_id=message_id,
                )
                return
            trace = message.metadata.setdefault("explain_trace", [])
            trace.extend(step.model_dump(mode="json") for step in steps)


class InMemoryDeliveryRepository:
    def __init__(self):
        self._deliveries: Dict[str, NotificationDelivery] = {}
        self._lock = threading.Lock()

    def create_many(
        self, deliveries: Sequence[NotificationDelivery]
    ) -> List[NotificationDelivery]:
        with self._lock:
            for delivery in deliveries:
                self._deliveries.setdefault(delivery.id, delivery.model_copy(deep=True))
        return list(deliveries)

    def get(self, tenant_id: str, delivery_id: str) -> Optional[NotificationDelivery]:
        with self._lock:
            delivery = self._deliveries.get(delivery_id)
            if delivery is None or delivery.tenant_id != tenant_id:
                return None
            return delivery.model_copy(deep=True)

    def update(
        self,
        delivery: NotificationDelivery,
        expected_status: Optional[DeliveryStatus] = None,
    ) -> bool:
        with self._lock:
            current = self._deliveries.get(delivery.id)
            if current is None:
                return False
            if expected_status is not None and current.status != expected_status:
                logger.info(
                    "delivery_update_conflict",
                    delivery_id=delivery.id,
                    expected_status=expected_status.value,
                    actual_status=current.status.value,
                )
                return False
            delivery.updated_at = utc_now()
            self._deliveries[delivery.id] = delivery.model_copy(deep=True)
            return True

    def list_by_message(
        self, tenant_id: str, message_id: str
    ) -> List[NotificationDelivery]:
        with self._lock:
            return [
                d.model_copy(deep=True)
                for d in self._deliveries.values()
                if d.tenant_id == tenant_id and d.message_id == message_id
            ]

    def find_by_external_id(
        self, provider_code: str, external_id: str, tenant_id: Optional[str] = None
    ) -> Optional[NotificationDelivery]:
        with self._lock:
            for delivery in self._deliveries.values():
                if (
                    delivery.provider_code == provider_code
                    and delivery.external_id == external_id
                    and (tenant_id is None or delivery.tenant_id == tenant_id)
                ):
                    return delivery.model_copy(deep=True)
        return None

    def list_stuck(
        self, statuses: Iterable[DeliveryStatus], older_than: datetime, limit: int = 100
    ) -> List[NotificationDelivery]:
        wanted = set(statuses)
        with self._lock:
            stuck = [
                d.model_copy(deep=True)
                for d in self._deliveries.values()
                if d.status in wanted
                and d.updated_at < older_than
                and (d.next_attempt_at is None or d.next_attempt_at < older_than)
            ]
        stuck.sort(key=lambda d: d.updated_at)
        return stuck[:limit]

    def list_dlq_pending(self, limit: int = 100) -> List[NotificationDelivery]:
        with self._lock:
            pending = [d.model_copy(deep=True) for d in self._deliveries.values() if d.dlq_pending]
        pending.sort(key=lambda d: d.updated_at)
        return pending[:limit]


class InMemoryPreferenceRepository:
    def __init__(self):
        self._records: Dict[
            Tuple[str, PreferenceScope, str, Optional[str], Optional[ChannelCode]],
            PreferenceRecord,
        ] = {}
        self._lock = threading.Lock()

    def upsert(self, record: PreferenceRecord) -> PreferenceRecord:
        key = (
            record.tenant_id,
            record.scope,
            record.scope_id,
            record.event_code,
            record.channel,
        )
        with self._lock:
            self._records[key] = record.model_copy(deep=True)
        return record

    def find(
        self,
        tenant_id: str,
        scope: PreferenceScope,
        scope_id: str,
        event_code: str,
        channel: ChannelCode,
    ) -> Optional[PreferenceRecord]:
        candidates = [
            (event_code, channel),
            (event_code, None),
            (None, channel),
            (None, None),
        ]
        with self._lock:
            for candidate_event, candidate_channel in candidates:
                record = self._records.get(
                    (tenant_id, scope, scope_id, candidate_event, candidate_channel)
                )
                if record is not None:
                    return record.model_copy(deep=True)
        return None

    def get_for_user_by_event(
        self, tenant_id: str, principal_id: str, event_code: str
    ) -> List[PreferenceRecord]:
        """User-scope records for event_code, including event wildcards."""
        with self._lock:
            return [
                record.model_copy(deep=True)
                for (tenant, scope, scope_id, event, _), record in self._records.items()
                if tenant == tenant_id
                and scope == PreferenceScope.USER
                and scope_id == principal_id
                and event in (event_code, None)
            ]

    def is_enabled(
        self, tenant_id: str, principal_id: str, event_code: str, channel: ChannelCode
    ) -> bool:
        record = self.find(
            tenant_id, PreferenceScope.USER, principal_id, event_code, channel
        )
        return record.is_enabled if record else True


class InMemorySuppressionRepository:
    def __init__(self):
        self._entries: Dict[Tuple[str, ChannelCode, str], SuppressionEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(tenant_id: str, channel: ChannelCode, address: str):
        return (tenant_id, channel, address.strip().lower())

    def is_suppressed(self, tenant_id: str, channel: ChannelCode, address: str) -> bool:
        with self._lock:
            return self._key(tenant_id, channel, address) in self._entries

    def add(self, entry: SuppressionEntry) -> SuppressionEntry:
        with self._lock:
            self._entries[self._key(entry.tenant_id, entry.channel, entry.address)] = (
                entry.model_copy(deep=True)
            )
        return entry


class InMemoryDlqRepository:
    def __init__(self):
        self._entries: Dict[str, DlqEntry] = {}
        self._lock = threading.Lock()

    def create(self, entry: DlqEntry) -> DlqEntry:
        with self._lock:
            self._entries[entry.id] = entry.model_copy(deep=True)
        return entry

    def list(
        self, tenant_id: str, unreplayed_only: bool = False, limit: int = 100
    ) -> List[DlqEntry]:
        with self._lock:
            entries = [
                e.model_copy(deep=True)
                for e in self._entries.values()
                if e.tenant_id == tenant_id
                and not (unreplayed_only and e.replayed_at is not None)
            ]
        entries.sort(key=lambda e: e.dead_at, reverse=True)
        return entries[:limit]

    def get_by_id(self, tenant_id: str, entry_id: str) -> Optional[DlqEntry]:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None or entry.tenant_id != tenant_id:
                return None
            return entry.model_copy(deep=True)

    def find_unreplayed_by_delivery(
        self, tenant_id: str, delivery_id: str
    ) -> Optional[DlqEntry]:
        with self._lock:
            for entry in self._entries.values():
                if (
                    entry.tenant_id == tenant_id
                    and entry.delivery_id == delivery_id
                    and entry.replayed_at is None
                ):
                    return entry.model_copy(deep=True)
        return None

    def mark_replayed(
        self, tenant_id: str, entry_id: str, replayed_by: str, replayed_at: datetime
    ) -> Optional[DlqEntry]:
        with self._lock:
            entry = self._entries.get(entry_id)
            if entry is None or entry.tenant_id != tenant_id:
                return None
            entry.replayed_at = replayed_at
            entry.replayed_by = replayed_by
            entry.replay_count += 1
            return entry.model_copy(deep=True)


class InMemoryDigestStagingRepository:
    def __init__(self):
        self._entries: Dict[str, DigestStagingEntry] = {}
        self._lock = threading.Lock()

    def add(self, entry: DigestStagingEntry) -> DigestStagingEntry:
        with self._lock:
            self._entries.setdefault(entry.id, entry.model_copy(deep=True))
        return entry

    def list_pending(self, frequency: Frequency) -> List[DigestStagingEntry]:
        with self._lock:
            pending = [
                e.model_copy(deep=True)
                for e in self._entries.values()
                if e.frequency == frequency and e.delivered_at is None
            ]
        pending.sort(key=lambda e: e.staged_at)
        return pending

    def mark_delivered(self, entry_ids: Sequence[str], delivered_at: datetime) -> int:
        changed = 0
        with self._lock:
            for entry_id in entry_ids:
                entry = self._entries.get(entry_id)
                if entry is not None and entry.delivered_at is None:
                    entry.delivered_at = delivered_at
                    changed += 1
        return changed

    def mark_pending(self, entry_ids: Sequence[str]) -> int:
        changed = 0
        with self._lock:
            for entry_id in entry_ids:
                entry = self._entries.get(entry_id)
                if entry is not None and entry.delivered_at is not None:
                    entry.delivered_at = None
                    changed += 1
        return changed

    def delete_delivered_before(self, cutoff: datetime) -> int:
        with self._lock:
            expired = [
                entry_id
                for entry_id, entry in self._entries.items()
                if entry.delivered_at is not None and entry.delivered_at < cutoff
            ]
            for entry_id in expired:
                del self._entries[entry_id]
        return len(expired)


class InMemoryConsentRepository:
    def __init__(self):
        self._consents: Dict[Tuple[str, str], WhatsAppConsent] = {}
        self._lock = threading.Lock()

    def get(self, tenant_id: str, phone: str) -> Optional[WhatsAppConsent]:
        with self._lock:
            consent = self._consents.get((tenant_id, phone))
            return consent.model_copy(deep=True) if consent else None

    def is_opted_in(self, tenant_id: str, phone: str) -> bool:
        consent = self.get(tenant_id, phone)
        return bool(consent and consent.opted_in)

    def is_in_conversation_window(
        self, tenant_id: str, phone: str, now: datetime
    ) -> bool:
        consent = self.get(tenant_id, phone)
        if consent is None or consent.conversation_window_end is None:
            return False
        return now < consent.conversation_window_end

    def refresh_conversation_window(
        self, tenant_id: str, phone: str, start: datetime, end: datetime
    ) -> WhatsAppConsent:
        with self._lock:
            consent = self._consents.get((tenant_id, phone)) or WhatsAppConsent(
                tenant_id=tenant_id, phone=phone
            )
            consent.conversation_window_start = start
            consent.conversation_window_end = end
            self._consents[(tenant_id, phone)] = consent
            return consent.model_copy(deep=True)

    def set_opt_in(
        self, tenant_id: str, phone: str, opted_in: bool, at: datetime
    ) -> WhatsAppConsent:
        with self._lock:
            consent = self._consents.get((tenant_id, phone)) or WhatsAppConsent(
                tenant_id=tenant_id, phone=phone
            )
            consent.opted_in = opted_in
            if opted_in:
                consent.opted_in_at = at
            else:
                consent.opted_out_at = at
            self._consents[(tenant_id, phone)] = consent
            return consent.model_copy(deep=True)


class InMemoryPushSubscriptionRepository:
    def __init__(self):
        self._subscriptions: Dict[Tuple[str, str], PushSubscription] = {}
        self._lock = threading.Lock()

    def list_for_recipient(
        self, tenant_id: str, recipient_id: str
    ) -> List[PushSubscription]:
        with self._lock:
            return [
                s.model_copy(deep=True)
                for s in self._subscriptions.values()
                if s.tenant_id == tenant_id and s.recipient_id == recipient_id
            ]

    def add(self, subscription: PushSubscription) -> PushSubscription:
        with self._lock:
            self._subscriptions[(subscription.tenant_id, subscription.endpoint)] = (
                subscription.model_copy(deep=True)
            )
        return subscription

    def remove(self, tenant_id: str, endpoint: str) -> None:
        with self._lock:
            self._subscriptions.pop((tenant_id, endpoint), None)


class InMemoryDirectory:
    """Directory of principals with role and group membership."""

    def __init__(self):
        self._principals: Dict[Tuple[str, str], Principal] = {}
        self._roles: Dict[Tuple[str, str], List[str]] = {}
        self._groups: Dict[Tuple[str, str], List[str]] = {}
        self._lock = threading.Lock()

    def add_principal(
        self,
        principal: Principal,
        roles: Sequence[str] = (),
        groups: Sequence[str] = (),
    ) -> Principal:
        key = (principal.tenant_id, principal.principal_id)
        with self._lock:
            self._principals[key] = principal.model_copy(deep=True)
            for role in roles:
                members = self._roles.setdefault((principal.tenant_id, role), [])
                if principal.principal_id not in members:
                    members.append(principal.principal_id)
            for group in groups:
                members = self._groups.setdefault((principal.tenant_id, group), [])
                if principal.principal_id not in members:
                    members.append(principal.principal_id)
        return principal

    def get_principal(self, tenant_id: str, principal_id: str) -> Optional[Principal]:
        with self._lock:
            principal = self._principals.get((tenant_id, principal_id))
            return principal.model_copy(deep=True) if principal else None

    def get_role_members(self, tenant_id: str, role: str) -> List[str]:
        with self._lock:
            return list(self._roles.get((tenant_id, role), []))

    def get_group_members(self, tenant_id: str, group_id: str) -> List[str]:
        with self._lock:
            return list(self._groups.get((tenant_id, group_id), []))
