"""Notification planning.

For each rule matching a domain event the planner resolves recipients,
evaluates preferences per recipient x channel, stages digests, defers
quiet hours, applies the dedup window, then persists the message, its
deliveries and the planning trace and enqueues one delivery job per
delivery.

Message, delivery and staging ids are derived from the event, rule and
recipient, and the message stays ``pending`` until its deliveries are
stored. A plan job retried after a partial failure re-plans the pending
message onto the same rows instead of skipping it.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from infrastructure.events import Event
from infrastructure.logging import get_module_logger, redact_identifier
from infrastructure.queue import BackoffOptions, JobOptions, JobQueue
from infrastructure.resilience import run_non_critical
from modules.notify.channels import ChannelRegistry
from modules.notify.dedup import DedupFilter
from modules.notify.digest import DigestService
from modules.notify.dispatch import delay_until, enqueue_delivery
from modules.notify.domain import (
    AdapterNotFoundError,
    BlockReason,
    Decision,
    DeliverNotificationPayload,
    DigestStagingEntry,
    DomainEvent,
    ExplainPhase,
    ExplainStep,
    Frequency,
    JobType,
    MessageStatus,
    NotificationDelivery,
    NotificationMessage,
    NotificationRule,
    PlanningError,
    PlanNotificationPayload,
    PreferenceCheckInput,
    ResolvedRecipient,
    stable_id,
)
from modules.notify.explain import build_step
from modules.notify.persistence import DeliveryRepository, MessageRepository
from modules.notify.preferences import PreferenceEvaluator
from modules.notify.recipients import RecipientResolver
from modules.notify.rules import RuleMatcher, RuleFailure
from modules.notify.templates import TemplateRenderer

logger = get_module_logger()

PLAN_JOB_ATTEMPTS = 3
PLAN_JOB_BACKOFF_MS = 2000

PlannedDelivery = Tuple[NotificationDelivery, DeliverNotificationPayload, int]


@dataclass
class RulePlan:
    """Outcome of planning one matched rule."""

    rule_code: str
    message_id: Optional[str] = None
    deliveries: int = 0
    deferred: int = 0
    staged: int = 0
    blocked: int = 0
    job_ids: List[str] = field(default_factory=list)


@dataclass
class PlanResult:
    event_id: str
    plans: List[RulePlan] = field(default_factory=list)
    rule_failures: List[RuleFailure] = field(default_factory=list)

    @property
    def message_ids(self) -> List[str]:
        return [plan.message_id for plan in self.plans if plan.message_id]

    @property
    def delivery_count(self) -> int:
        return sum(plan.deliveries for plan in self.plans)


def template_variables(
    event: DomainEvent, recipient: Optional[ResolvedRecipient] = None
) -> Dict[str, Any]:
    """Variables available to templates: event data plus event and recipient fields."""
    variables: Dict[str, Any] = dict(event.data)
    variables.update(
        {
            "event_type": event.event_type,
            "event_id": event.event_id,
            "entity_type": event.entity_type,
            "entity_id": event.entity_id,
            "lifecycle_state": event.lifecycle_state,
        }
    )
    if recipient is not None:
        variables["recipient_id"] = recipient.principal_id
        variables["recipient_name"] = recipient.display_name or ""
    return variables


def message_id_for(tenant_id: str, event_id: str, rule_code: str) -> str:
    return stable_id("message", tenant_id, event_id, rule_code)


def recipient_record_id(kind: str, message_id: str, recipient: ResolvedRecipient) -> str:
    return stable_id(kind, message_id, recipient.principal_id, recipient.channel.value)


class NotificationPlanner:
    def __init__(
        self,
        matcher: RuleMatcher,
        resolver: RecipientResolver,
        evaluator: PreferenceEvaluator,
        dedup: DedupFilter,
        registry: ChannelRegistry,
        renderer: TemplateRenderer,
        digest: DigestService,
        messages: MessageRepository,
        deliveries: DeliveryRepository,
        queue: JobQueue,
        max_attempts: int = 3,
        backoff_delay_ms: int = 2000,
        default_locale: str = "en",
    ):
        self.matcher = matcher
        self.resolver = resolver
        self.evaluator = evaluator
        self.dedup = dedup
        self.registry = registry
        self.renderer = renderer
        self.digest = digest
        self.messages = messages
        self.deliveries = deliveries
        self.queue = queue
        self.max_attempts = max_attempts
        self.backoff_delay_ms = backoff_delay_ms
        self.default_locale = default_locale

    # ------------------------------------------------------------------
    # Event bus entry point
    # ------------------------------------------------------------------

    def handle_domain_event(self, event: Event) -> str:
        """Event bus handler: enqueue a plan-notification job for event.

        ``event.payload`` carries the domain event fields (``event_id``,
        ``entity_type``, ``entity_id``, ``lifecycle_state``, ``data``); a
        payload without ``data`` is used as the data itself.
        """
        body = dict(event.payload)
        data = body.pop("data", None)
        domain_event = DomainEvent(
            tenant_id=event.tenant_id,
            event_type=event.event_type,
            event_id=body.pop("event_id", None) or str(event.correlation_id),
            entity_type=body.pop("entity_type", None),
            entity_id=body.pop("entity_id", None),
            lifecycle_state=body.pop("lifecycle_state", None),
            data=data if data is not None else body,
            occurred_at=event.timestamp,
        )
        job_id = self.queue.add(
            JobType.PLAN_NOTIFICATION.value,
            PlanNotificationPayload(event=domain_event).model_dump(mode="json"),
            JobOptions(
                attempts=PLAN_JOB_ATTEMPTS,
                backoff=BackoffOptions(type="exponential", delay_ms=PLAN_JOB_BACKOFF_MS),
            ),
        )
        logger.info(
            "plan_job_enqueued",
            tenant_id=domain_event.tenant_id,
            event_type=domain_event.event_type,
            event_id=domain_event.event_id,
            job_id=job_id,
        )
        return job_id

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, event: DomainEvent) -> PlanResult:
        """Plan every rule matching event.

        Each rule is planned on its own: a rule that raises is logged and
        reported while the remaining rules are still planned.

        Raises:
            PlanningError: If any matched rule raised, after all rules ran.
        """
        match = self.matcher.match(event)
        result = PlanResult(event_id=event.event_id, rule_failures=list(match.failures))
        failed: List[RuleFailure] = []

        for rule in match.matches:
            try:
                existing = self.messages.find_by_event(
                    event.tenant_id, event.event_id, rule.code
                )
                if existing is not None and existing.status != MessageStatus.PENDING:
                    logger.info(
                        "rule_already_planned",
                        tenant_id=event.tenant_id,
                        event_id=event.event_id,
                        rule_code=rule.code,
                        message_id=existing.id,
                    )
                    result.plans.append(RulePlan(rule_code=rule.code, message_id=existing.id))
                    continue
                result.plans.append(
                    self._plan_rule(event, rule.model_copy(deep=True), existing)
                )
            except Exception as e:
                logger.error(
                    "rule_planning_failed",
                    tenant_id=event.tenant_id,
                    event_id=event.event_id,
                    rule_code=rule.code,
                    error=str(e),
                    exc_info=True,
                )
                failed.append(RuleFailure(rule_code=rule.code, error=str(e)))

        result.rule_failures.extend(failed)
        logger.info(
            "event_planned",
            tenant_id=event.tenant_id,
            event_type=event.event_type,
            event_id=event.event_id,
            rules=len(match.matches),
            messages=len(result.message_ids),
            deliveries=result.delivery_count,
            failed_rules=len(failed),
        )
        if failed:
            raise PlanningError(event.event_id, [failure.rule_code for failure in failed])
        return result

    def _plan_rule(
        self,
        event: DomainEvent,
        rule: NotificationRule,
        existing: Optional[NotificationMessage] = None,
    ) -> RulePlan:
        plan = RulePlan(rule_code=rule.code)
        steps: List[ExplainStep] = [
            build_step(
                ExplainPhase.RULE_MATCH,
                Decision.PASSED,
                input={"event_type": event.event_type, "event_id": event.event_id},
                output={"rule_code": rule.code, "channels": [c.value for c in rule.channels]},
            )
        ]

        resolution = self.resolver.resolve(
            event.tenant_id, rule.recipient_rules, rule.channels, event.data
        )
        for missing in resolution.missing:
            steps.append(
                build_step(
                    ExplainPhase.RECIPIENT_RESOLUTION,
                    Decision.BLOCKED,
                    input={
                        "principal_id": missing.principal_id,
                        "channel": missing.channel.value,
                    },
                    reason=missing.reason,
                )
            )
        if not resolution.recipients:
            logger.info(
                "rule_has_no_recipients",
                tenant_id=event.tenant_id,
                rule_code=rule.code,
                event_id=event.event_id,
                missing=len(resolution.missing),
            )
            if existing is not None:
                self.messages.update_status(
                    event.tenant_id, existing.id, MessageStatus.COMPLETED
                )
                plan.message_id = existing.id
            return plan
        steps.append(
            build_step(
                ExplainPhase.RECIPIENT_RESOLUTION,
                Decision.PASSED,
                output={
                    "principals": resolution.principal_ids,
                    "recipients": len(resolution.recipients),
                },
            )
        )

        message = existing or NotificationMessage(
            id=message_id_for(event.tenant_id, event.event_id, rule.code),
            tenant_id=event.tenant_id,
            rule_code=rule.code,
            event_type=event.event_type,
            event_id=event.event_id,
            template_key=rule.template_key,
            priority=rule.priority,
            payload=template_variables(event),
        )
        plan.message_id = message.id

        planned: List[PlannedDelivery] = []
        staged: List[DigestStagingEntry] = []
        claimed: List[str] = []
        try:
            self._decide(
                event,
                rule,
                message,
                resolution.recipients,
                plan,
                steps,
                planned,
                staged,
                claimed,
            )
            self._persist(event, message, existing is None, steps, planned, staged)
        except Exception:
            for key in claimed:
                run_non_critical("dedup_release", self.dedup.release, key)
            raise

        for delivery, payload, delay_ms in planned:
            plan.job_ids.append(
                enqueue_delivery(
                    self.queue,
                    payload,
                    delay_ms=delay_ms,
                    backoff_delay_ms=self.backoff_delay_ms,
                )
            )
            logger.debug(
                "delivery_enqueued",
                delivery_id=delivery.id,
                channel=delivery.channel.value,
                recipient=redact_identifier(delivery.recipient_addr),
                delay_ms=delay_ms,
            )
        plan.deliveries = len(planned)
        return plan

    def _decide(
        self,
        event: DomainEvent,
        rule: NotificationRule,
        message: NotificationMessage,
        recipients: List[ResolvedRecipient],
        plan: RulePlan,
        steps: List[ExplainStep],
        planned: List[PlannedDelivery],
        staged: List[DigestStagingEntry],
        claimed: List[str],
    ) -> None:
        """Decide the outcome of every recipient x channel; writes nothing but dedup claims."""
        checks = self.evaluator.check_batch(
            [
                PreferenceCheckInput(
                    tenant_id=event.tenant_id,
                    principal_id=recipient.principal_id,
                    event_code=rule.code,
                    channel=recipient.channel,
                    recipient_addr=recipient.address,
                    priority=rule.priority,
                )
                for recipient in recipients
            ]
        )

        for recipient, check in zip(recipients, checks):
            pair = {"principal_id": recipient.principal_id, "channel": recipient.channel.value}

            if not check.allowed:
                plan.blocked += 1
                steps.append(
                    build_step(
                        ExplainPhase.PREFERENCE_CHECK,
                        Decision.BLOCKED,
                        input=pair,
                        output={"resolved_from": check.resolved_from.value},
                        reason=check.reason,
                    )
                )
                continue

            try:
                adapter = self.registry.get(recipient.channel)
            except AdapterNotFoundError as e:
                plan.blocked += 1
                logger.warning(
                    "channel_not_available",
                    channel=recipient.channel.value,
                    rule_code=rule.code,
                    error=str(e),
                )
                steps.append(
                    build_step(
                        ExplainPhase.PREFERENCE_CHECK,
                        Decision.BLOCKED,
                        input=pair,
                        reason=BlockReason.NO_ADAPTER.value,
                    )
                )
                continue

            # Rendered per recipient: templates may use recipient variables
            locale = recipient.locale or self.default_locale
            variables = template_variables(event, recipient)
            rendered = self.renderer.render(
                rule.template_key, variables, recipient.channel, locale
            )

            if check.frequency != Frequency.IMMEDIATE:
                plan.staged += 1
                staged.append(
                    DigestStagingEntry(
                        id=recipient_record_id("digest", message.id, recipient),
                        tenant_id=event.tenant_id,
                        recipient_id=recipient.principal_id,
                        recipient_addr=recipient.address,
                        channel=recipient.channel,
                        frequency=check.frequency,
                        message_id=message.id,
                        event_code=rule.code,
                        subject=rendered.subject if rendered else None,
                        body_text=rendered.body_text if rendered else None,
                        template_key=rule.template_key,
                        priority=rule.priority,
                        payload=variables,
                    )
                )
                steps.append(
                    build_step(
                        ExplainPhase.DIGEST_STAGING,
                        Decision.STAGED,
                        input=pair,
                        output={"frequency": check.frequency.value},
                    )
                )
                continue

            delivery = NotificationDelivery(
                id=recipient_record_id("delivery", message.id, recipient),
                tenant_id=event.tenant_id,
                message_id=message.id,
                channel=recipient.channel,
                provider_code=adapter.provider_code,
                recipient_id=recipient.principal_id,
                recipient_addr=recipient.address,
                max_attempts=self.max_attempts,
            )

            decision = self.dedup.check_and_claim(
                event.tenant_id,
                recipient.principal_id,
                rule.code,
                recipient.channel,
                rule.dedup_window_ms,
                owner=delivery.id,
            )
            if decision.duplicate:
                plan.blocked += 1
                steps.append(
                    build_step(
                        ExplainPhase.DEDUP_CHECK,
                        Decision.BLOCKED,
                        input={**pair, "window_ms": rule.dedup_window_ms},
                        output={"existing_delivery_id": decision.existing_owner},
                        reason=BlockReason.DUPLICATE.value,
                    )
                )
                continue
            if decision.key:
                claimed.append(decision.key)

            delay_ms = 0
            if check.is_deferred:
                plan.deferred += 1
                delay_ms = delay_until(check.defer_until)
                delivery.next_attempt_at = check.defer_until
                steps.append(
                    build_step(
                        ExplainPhase.QUIET_HOURS,
                        Decision.DEFERRED,
                        input=pair,
                        output={"defer_until": check.defer_until.isoformat()},
                        reason=check.reason,
                    )
                )
            else:
                steps.append(
                    build_step(
                        ExplainPhase.PREFERENCE_CHECK,
                        Decision.PASSED,
                        input=pair,
                        output={
                            "resolved_from": check.resolved_from.value,
                            "frequency": check.frequency.value,
                        },
                    )
                )

            payload = DeliverNotificationPayload(
                tenant_id=event.tenant_id,
                message_id=message.id,
                delivery_id=delivery.id,
                channel=recipient.channel,
                provider_code=adapter.provider_code,
                recipient_id=recipient.principal_id,
                recipient_addr=recipient.address,
                template_key=rule.template_key,
                event_code=rule.code,
                subject=rendered.subject if rendered else None,
                body_text=rendered.body_text if rendered else None,
                body_html=rendered.body_html if rendered else None,
                body_json=rendered.body_json if rendered else None,
                priority=rule.priority,
                variables=variables,
                locale=locale,
                metadata={"event_id": event.event_id, "rule_code": rule.code},
            )
            delivery.payload = payload.model_dump(mode="json")
            planned.append((delivery, payload, delay_ms))

    def _persist(
        self,
        event: DomainEvent,
        message: NotificationMessage,
        is_new: bool,
        steps: List[ExplainStep],
        planned: List[PlannedDelivery],
        staged: List[DigestStagingEntry],
    ) -> None:
        """Write the message, its deliveries and staged digests, then leave ``pending``."""
        if is_new:
            message.metadata["explain_trace"] = [step.model_dump(mode="json") for step in steps]
            self.messages.create(message)
        else:
            logger.info(
                "pending_message_replanned",
                tenant_id=event.tenant_id,
                event_id=event.event_id,
                message_id=message.id,
            )
        if planned:
            self.deliveries.create_many([delivery for delivery, _, _ in planned])
        for entry in staged:
            self.digest.stage(entry)
        self.messages.update_status(
            event.tenant_id,
            message.id,
            MessageStatus.DELIVERING if planned else MessageStatus.COMPLETED,
        )

    def handle_plan_job(self, payload: Dict[str, Any]) -> PlanResult:
        """Job handler for plan-notification."""
        return self.plan(PlanNotificationPayload.model_validate(payload).event)
