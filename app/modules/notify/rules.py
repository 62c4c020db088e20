"""Rule matching for incoming domain events."""

from dataclasses import dataclass, field
from typing import List, Optional

from infrastructure.logging import get_module_logger
from modules.notify.conditions import ConditionEvaluator, build_context
from modules.notify.domain import ConditionError, DomainEvent, NotificationRule
from modules.notify.persistence import RuleRepository

logger = get_module_logger()


@dataclass
class RuleFailure:
    """A rule skipped because its condition could not be evaluated."""

    rule_code: str
    error: str


@dataclass
class MatchResult:
    matches: List[NotificationRule] = field(default_factory=list)
    failures: List[RuleFailure] = field(default_factory=list)


class RuleMatcher:
    """Selects the enabled rules that apply to an event.

    A rule applies when its event type matches, its optional entity type
    and lifecycle state match, and its condition expression (if any)
    evaluates true. A rule whose condition fails to evaluate is skipped
    without affecting the other rules.
    """

    def __init__(
        self,
        rules: RuleRepository,
        evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.rules = rules
        self.evaluator = evaluator or ConditionEvaluator()

    def match(self, event: DomainEvent) -> MatchResult:
        result = MatchResult()
        candidates = self.rules.list_enabled(event.tenant_id, event.event_type)
        context = build_context(event)

        for rule in candidates:
            if rule.entity_type and rule.entity_type != event.entity_type:
                continue
            if rule.lifecycle_state and rule.lifecycle_state != event.lifecycle_state:
                continue
            if rule.condition_expr:
                try:
                    if not self.evaluator.evaluate(rule.condition_expr, context):
                        continue
                except ConditionError as e:
                    logger.warning(
                        "rule_condition_failed",
                        rule_code=rule.code,
                        event_type=event.event_type,
                        event_id=event.event_id,
                        error=str(e),
                    )
                    result.failures.append(RuleFailure(rule_code=rule.code, error=str(e)))
                    continue
            result.matches.append(rule)

        logger.debug(
            "rules_matched",
            event_type=event.event_type,
            event_id=event.event_id,
            candidates=len(candidates),
            matched=[rule.code for rule in result.matches],
        )
        return result
