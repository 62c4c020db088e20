"""Repository interfaces and in-memory implementations."""

from modules.notify.persistence.base import (
    ConsentRepository,
    DeliveryRepository,
    DigestStagingRepository,
    Directory,
    DlqRepository,
    MessageRepository,
    PreferenceRepository,
    PushSubscriptionRepository,
    RuleRepository,
    SuppressionRepository,
)
from modules.notify.persistence.memory import (
    InMemoryConsentRepository,
    InMemoryDeliveryRepository,
    InMemoryDigestStagingRepository,
    InMemoryDirectory,
    InMemoryDlqRepository,
    InMemoryMessageRepository,
    InMemoryPreferenceRepository,
    InMemoryPushSubscriptionRepository,
    InMemoryRuleRepository,
    InMemorySuppressionRepository,
)

__all__ = [
    "ConsentRepository",
    "DeliveryRepository",
    "DigestStagingRepository",
    "Directory",
    "DlqRepository",
    "InMemoryConsentRepository",
    "InMemoryDeliveryRepository",
    "InMemoryDigestStagingRepository",
    "InMemoryDirectory",
    "InMemoryDlqRepository",
    "InMemoryMessageRepository",
    "InMemoryPreferenceRepository",
    "InMemoryPushSubscriptionRepository",
    "InMemoryRuleRepository",
    "InMemorySuppressionRepository",
    "MessageRepository",
    "PreferenceRepository",
    "PushSubscriptionRepository",
    "RuleRepository",
    "SuppressionRepository",
]
