"""Notification pipeline exceptions."""

from typing import List, Optional


class NotifyError(Exception):
    """Base class for notification pipeline errors."""


class ConfigurationError(NotifyError):
    """An adapter or component is misconfigured."""


class ConditionError(NotifyError):
    """A rule condition expression is malformed or cannot be evaluated."""


class AdapterNotFoundError(NotifyError):
    """No adapter is registered for a channel/provider."""

    def __init__(self, channel: str, provider_code: Optional[str] = None):
        self.channel = channel
        self.provider_code = provider_code
        target = f"{channel}:{provider_code}" if provider_code else channel
        super().__init__(f"No channel adapter registered for {target}")


class DeliveryNotFoundError(NotifyError):
    """A job references a delivery row that does not exist."""

    def __init__(self, tenant_id: str, delivery_id: str):
        self.tenant_id = tenant_id
        self.delivery_id = delivery_id
        super().__init__(f"Delivery {delivery_id} not found for tenant {tenant_id}")


class PlanningError(NotifyError):
    """One or more matched rules of an event could not be planned.

    Raised after every rule has been attempted so the plan job is retried;
    rules that were planned are skipped on the retry.
    """

    def __init__(self, event_id: str, rule_codes: List[str]):
        self.event_id = event_id
        self.rule_codes = list(rule_codes)
        super().__init__(
            f"Planning failed for event {event_id}, rules: {', '.join(self.rule_codes)}"
        )
