"""Recipient resolution.

Expands abstract recipient rules (user, role, group, event field) into
concrete principals, then picks one address per requested channel.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from infrastructure.logging import get_module_logger
from modules.notify.conditions import resolve_path
from modules.notify.domain import (
    BlockReason,
    ChannelCode,
    Principal,
    RecipientRule,
    RecipientRuleType,
    ResolvedRecipient,
)
from modules.notify.persistence import Directory

logger = get_module_logger()

# Principal attribute holding the default address of each channel
DEFAULT_ADDRESS_FIELDS = {
    ChannelCode.EMAIL: "email",
    ChannelCode.SMS: "phone",
    ChannelCode.WHATSAPP: "phone",
    ChannelCode.CHAT: "chat_handle",
    ChannelCode.PUSH: "principal_id",
}


@dataclass
class MissingRecipient:
    principal_id: str
    channel: ChannelCode
    reason: str = BlockReason.NO_ADDRESS.value


@dataclass
class ResolutionResult:
    recipients: List[ResolvedRecipient] = field(default_factory=list)
    missing: List[MissingRecipient] = field(default_factory=list)

    @property
    def principal_ids(self) -> List[str]:
        seen: List[str] = []
        for recipient in self.recipients:
            if recipient.principal_id not in seen:
                seen.append(recipient.principal_id)
        return seen


def address_for(principal: Principal, channel: ChannelCode) -> Optional[str]:
    """Explicit per-channel address first, then the principal's default field."""
    explicit = principal.addresses.get(channel.value)
    if explicit:
        return explicit
    return getattr(principal, DEFAULT_ADDRESS_FIELDS[channel], None) or None


class RecipientResolver:
    def __init__(self, directory: Directory):
        self.directory = directory

    def resolve(
        self,
        tenant_id: str,
        recipient_rules: Sequence[RecipientRule],
        channels: Sequence[ChannelCode],
        event_data: Optional[Dict[str, Any]] = None,
    ) -> ResolutionResult:
        """Resolve recipient_rules to (principal, channel, address) tuples.

        Principals are de-duplicated across rules in first-seen order.
        Unknown principals and principals without an address for a channel
        are reported in ``missing`` rather than raising.
        """
        result = ResolutionResult()
        principal_ids = self._expand(tenant_id, recipient_rules, event_data or {})

        for principal_id in principal_ids:
            principal = self.directory.get_principal(tenant_id, principal_id)
            for channel in channels:
                address = address_for(principal, channel) if principal else None
                if not address:
                    result.missing.append(
                        MissingRecipient(principal_id=principal_id, channel=channel)
                    )
                    continue
                result.recipients.append(
                    ResolvedRecipient(
                        principal_id=principal_id,
                        channel=channel,
                        address=address,
                        display_name=principal.display_name,
                        locale=principal.locale,
                    )
                )

        logger.debug(
            "recipients_resolved",
            tenant_id=tenant_id,
            principals=len(principal_ids),
            recipients=len(result.recipients),
            missing=len(result.missing),
        )
        return result

    def _expand(
        self,
        tenant_id: str,
        recipient_rules: Sequence[RecipientRule],
        event_data: Dict[str, Any],
    ) -> List[str]:
        principal_ids: List[str] = []

        def add(candidate: Any) -> None:
            if isinstance(candidate, (list, tuple)):
                for item in candidate:
                    add(item)
            elif isinstance(candidate, str) and candidate and candidate not in principal_ids:
                principal_ids.append(candidate)

        for rule in recipient_rules:
            if rule.type == RecipientRuleType.USER:
                add(rule.value)
            elif rule.type == RecipientRuleType.ROLE:
                add(self.directory.get_role_members(tenant_id, rule.value))
            elif rule.type == RecipientRuleType.GROUP:
                add(self.directory.get_group_members(tenant_id, rule.value))
            elif rule.type == RecipientRuleType.EVENT_FIELD:
                path = rule.value if rule.value.startswith("data.") else f"data.{rule.value}"
                value = resolve_path({"data": event_data}, path)
                if isinstance(value, (str, list, tuple)):
                    add(value)
                else:
                    logger.info(
                        "recipient_event_field_missing",
                        tenant_id=tenant_id,
                        path=rule.value,
                    )
        return principal_ids
