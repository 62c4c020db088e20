"""Notification pipeline service.

Composes the planner, delivery executor, digest service, DLQ manager and
explain service over one set of stores, and exposes the job handlers the
queue worker runs.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from infrastructure.configuration import Settings
from infrastructure.events import EventBus
from infrastructure.idempotency import DedupIndex, DedupKeyBuilder, InMemoryDedupIndex
from infrastructure.logging import get_module_logger
from infrastructure.queue import InMemoryJobQueue, JobQueue, JobWorker, PermanentJobError
from infrastructure.resilience import CircuitBreakerRegistry
from modules.notify.channels import (
    ChannelRegistry,
    GCNotifyEmailAdapter,
    GCNotifySmsAdapter,
    SlackChatAdapter,
    WebPushAdapter,
    WhatsAppAdapter,
)
from modules.notify.dedup import DedupFilter
from modules.notify.digest import DigestService, FlushResult
from modules.notify.dlq import DlqManager
from modules.notify.domain import (
    DeliveryNotFoundError,
    DigestFlushPayload,
    ExplainTrace,
    Frequency,
    JobType,
)
from modules.notify.executor import DeliveryExecutor, ExecutionOutcome
from modules.notify.explain import ExplainService
from modules.notify.persistence import (
    ConsentRepository,
    DeliveryRepository,
    DigestStagingRepository,
    Directory,
    DlqRepository,
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
    MessageRepository,
    PreferenceRepository,
    PushSubscriptionRepository,
    RuleRepository,
    SuppressionRepository,
)
from modules.notify.planner import NotificationPlanner
from modules.notify.preferences import PreferenceEvaluator, ScopedPreferenceResolver
from modules.notify.recipients import RecipientResolver
from modules.notify.rules import RuleMatcher
from modules.notify.templates import InMemoryTemplateRenderer, TemplateRenderer

logger = get_module_logger()


@dataclass
class NotifyStores:
    """The persistence ports used by the pipeline."""

    rules: RuleRepository = field(default_factory=InMemoryRuleRepository)
    messages: MessageRepository = field(default_factory=InMemoryMessageRepository)
    deliveries: DeliveryRepository = field(default_factory=InMemoryDeliveryRepository)
    preferences: PreferenceRepository = field(default_factory=InMemoryPreferenceRepository)
    suppressions: SuppressionRepository = field(default_factory=InMemorySuppressionRepository)
    dlq: DlqRepository = field(default_factory=InMemoryDlqRepository)
    digest_staging: DigestStagingRepository = field(
        default_factory=InMemoryDigestStagingRepository
    )
    consents: ConsentRepository = field(default_factory=InMemoryConsentRepository)
    push_subscriptions: PushSubscriptionRepository = field(
        default_factory=InMemoryPushSubscriptionRepository
    )
    directory: Directory = field(default_factory=InMemoryDirectory)


def build_channel_registry(
    settings: Settings,
    stores: NotifyStores,
    breakers: Optional[CircuitBreakerRegistry] = None,
) -> ChannelRegistry:
    """Register an adapter for every enabled channel."""
    registry = ChannelRegistry(breakers=breakers)
    factories = {
        "email": lambda: GCNotifyEmailAdapter(settings.notify),
        "sms": lambda: GCNotifySmsAdapter(settings.notify),
        "chat": lambda: SlackChatAdapter(settings.slack),
        "whatsapp": lambda: WhatsAppAdapter(settings.whatsapp, consents=stores.consents),
        "push": lambda: WebPushAdapter(settings.web_push, stores.push_subscriptions),
    }
    for channel in settings.notifications.enabled_channels:
        registry.register(factories[channel](), default=True)
    logger.info(
        "channel_registry_built",
        adapters=[adapter.key for adapter in registry.adapters()],
    )
    return registry


class NotificationService:
    """Entry point to the notification pipeline.

    Example:
        ```python
        service = NotificationService(settings)
        service.subscribe(event_bus)
        service.register_handlers(worker)
        ```
    """

    def __init__(
        self,
        settings: Settings,
        stores: Optional[NotifyStores] = None,
        queue: Optional[JobQueue] = None,
        event_bus: Optional[EventBus] = None,
        dedup_index: Optional[DedupIndex] = None,
        renderer: Optional[TemplateRenderer] = None,
        registry: Optional[ChannelRegistry] = None,
    ):
        pipeline = settings.notifications
        self.settings = settings
        self.stores = stores or NotifyStores()
        self.queue = queue or InMemoryJobQueue()
        self.event_bus = event_bus
        self.renderer = renderer or InMemoryTemplateRenderer(
            default_locale=pipeline.default_locale
        )

        self.breakers = None
        if pipeline.circuit_breaker_enabled:
            self.breakers = CircuitBreakerRegistry(
                failure_threshold=pipeline.circuit_breaker_failure_threshold,
                timeout_seconds=pipeline.circuit_breaker_timeout_seconds,
            )
        self.registry = registry or build_channel_registry(
            settings, self.stores, self.breakers
        )

        stores = self.stores
        self.evaluator = PreferenceEvaluator(
            stores.preferences,
            stores.suppressions,
            scoped_resolver=ScopedPreferenceResolver(stores.preferences, stores.directory),
            max_workers=pipeline.batch_check_workers,
        )
        self.digest = DigestService(
            stores.digest_staging,
            stores.messages,
            stores.deliveries,
            self.registry,
            self.renderer,
            self.queue,
            max_items=pipeline.digest_max_items,
            max_attempts=pipeline.max_attempts,
            backoff_delay_ms=pipeline.retry_base_delay_ms,
        )
        self.dlq = DlqManager(
            stores.dlq,
            stores.deliveries,
            self.queue,
            backoff_delay_ms=pipeline.retry_base_delay_ms,
        )
        self.planner = NotificationPlanner(
            RuleMatcher(stores.rules),
            RecipientResolver(stores.directory),
            self.evaluator,
            DedupFilter(
                dedup_index or InMemoryDedupIndex(),
                DedupKeyBuilder(namespace=settings.dedup.DEDUP_NAMESPACE),
            ),
            self.registry,
            self.renderer,
            self.digest,
            stores.messages,
            stores.deliveries,
            self.queue,
            max_attempts=pipeline.max_attempts,
            backoff_delay_ms=pipeline.retry_base_delay_ms,
            default_locale=pipeline.default_locale,
        )
        self.executor = DeliveryExecutor(
            stores.deliveries,
            stores.messages,
            self.registry,
            self.evaluator,
            self.digest,
            self.dlq,
            self.queue,
            self.renderer,
            stores.suppressions,
            consents=stores.consents,
            event_bus=event_bus,
            retry_base_delay_ms=pipeline.retry_base_delay_ms,
            retry_max_delay_ms=pipeline.retry_max_delay_ms,
            conversation_window_hours=settings.whatsapp.WHATSAPP_CONVERSATION_WINDOW_HOURS,
        )
        self.explainer = ExplainService(stores.messages, stores.deliveries)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def subscribe(self, event_bus: EventBus) -> None:
        """Route domain events of the configured types to the planner."""
        for event_type in self.settings.notifications.plan_event_types:
            event_bus.subscribe(event_type, self._on_domain_event)
        logger.info(
            "planner_subscribed",
            event_types=self.settings.notifications.plan_event_types,
        )

    def _on_domain_event(self, event) -> Optional[str]:
        # The pipeline's own status events must not be planned again
        if event.event_type.startswith("notification."):
            return None
        return self.planner.handle_domain_event(event)

    def register_handlers(self, worker: JobWorker) -> None:
        worker.register(JobType.PLAN_NOTIFICATION.value, self.planner.handle_plan_job)
        worker.register(JobType.DELIVER_NOTIFICATION.value, self.handle_deliver_job)
        worker.register(JobType.PROCESS_CALLBACK.value, self.executor.process_callback)
        worker.register(JobType.DIGEST_FLUSH.value, self.handle_digest_job)

    # ------------------------------------------------------------------
    # Job handlers
    # ------------------------------------------------------------------

    def handle_deliver_job(self, payload: Dict[str, Any]) -> ExecutionOutcome:
        try:
            return self.executor.execute(payload)
        except DeliveryNotFoundError as e:
            raise PermanentJobError(str(e)) from e

    def handle_digest_job(self, payload: Dict[str, Any]) -> FlushResult:
        return self.flush_digests(DigestFlushPayload.model_validate(payload).frequency)

    # ------------------------------------------------------------------
    # Maintenance operations
    # ------------------------------------------------------------------

    def flush_digests(self, frequency: Frequency) -> FlushResult:
        return self.digest.flush(frequency)

    def cleanup_digests(self) -> int:
        return self.digest.cleanup(self.settings.notifications.digest_retention_days)

    def sweep_stuck_deliveries(self) -> Dict[str, int]:
        pipeline = self.settings.notifications
        return self.executor.sweep_stuck(
            pipeline.stuck_delivery_minutes, pipeline.stuck_delivery_action
        )

    def explain(self, tenant_id: str, message_id: str) -> Optional[ExplainTrace]:
        return self.explainer.explain(tenant_id, message_id)

    def health_check(self) -> Dict[str, Any]:
        """Adapter health plus the names of open circuit breakers."""
        adapters = self.registry.health_check()
        open_breakers = self.breakers.get_open() if self.breakers else []
        return {
            "healthy": all(adapters.values()) and not open_breakers,
            "adapters": adapters,
            "open_circuit_breakers": open_breakers,
        }


__all__ = [
    "NotificationService",
    "NotifyStores",
    "build_channel_registry",
]
