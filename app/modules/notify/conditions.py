"""Rule condition expressions.

A condition is a JSON-friendly dict evaluated against an event context::

    {"field": "data.amount", "op": "gte", "value": 1000}
    {"all": [{...}, {...}]}
    {"any": [{...}, {...}]}
    {"not": {...}}

Field paths are dotted lookups into ``{"event": {...}, "data": {...}}``.
"""

from typing import Any, Callable, Dict, Mapping

from modules.notify.domain import ConditionError, DomainEvent

_MISSING = object()


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if actual is _MISSING:
        return False
    try:
        if op == "gt":
            return actual > expected
        if op == "gte":
            return actual >= expected
        if op == "lt":
            return actual < expected
        return actual <= expected
    except TypeError as e:
        raise ConditionError(
            f"Cannot compare {type(actual).__name__} with {type(expected).__name__}"
        ) from e


def _contains(actual: Any, expected: Any) -> bool:
    if actual is _MISSING or actual is None:
        return False
    try:
        return expected in actual
    except TypeError as e:
        raise ConditionError(
            f"Field of type {type(actual).__name__} does not support contains"
        ) from e


def _exists(actual: Any) -> bool:
    return actual is not _MISSING and actual is not None


def _membership(expected: Any) -> Any:
    if not isinstance(expected, (list, tuple, set)):
        raise ConditionError("'in' and 'not_in' require a list value")
    return expected


OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda actual, expected: actual is not _MISSING and actual == expected,
    "ne": lambda actual, expected: actual is _MISSING or actual != expected,
    "gt": lambda actual, expected: _compare("gt", actual, expected),
    "gte": lambda actual, expected: _compare("gte", actual, expected),
    "lt": lambda actual, expected: _compare("lt", actual, expected),
    "lte": lambda actual, expected: _compare("lte", actual, expected),
    "in": lambda actual, expected: actual in _membership(expected),
    "not_in": lambda actual, expected: actual not in _membership(expected),
    "contains": _contains,
    "exists": lambda actual, expected: _exists(actual) == (expected is None or bool(expected)),
}


def build_context(event: DomainEvent) -> Dict[str, Any]:
    """Evaluation context for an event."""
    return {
        "event": {
            "tenant_id": event.tenant_id,
            "event_type": event.event_type,
            "event_id": event.event_id,
            "entity_type": event.entity_type,
            "entity_id": event.entity_id,
            "lifecycle_state": event.lifecycle_state,
        },
        "data": event.data,
    }


def resolve_path(context: Mapping[str, Any], path: str) -> Any:
    """Dotted lookup; returns the module sentinel when any segment is absent."""
    current: Any = context
    for segment in path.split("."):
        if isinstance(current, Mapping) and segment in current:
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return _MISSING
            current = current[index]
        else:
            return _MISSING
    return current


class ConditionEvaluator:
    """Evaluates condition expressions against an event context."""

    def evaluate(self, expr: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
        """Evaluate expr.

        Raises:
            ConditionError: If the expression is malformed.
        """
        if not isinstance(expr, Mapping) or not expr:
            raise ConditionError(f"Condition must be a non-empty object: {expr!r}")

        if "all" in expr:
            return all(self.evaluate(sub, context) for sub in self._clauses(expr, "all"))
        if "any" in expr:
            return any(self.evaluate(sub, context) for sub in self._clauses(expr, "any"))
        if "not" in expr:
            return not self.evaluate(expr["not"], context)

        field = expr.get("field")
        op = expr.get("op", "eq")
        if not isinstance(field, str) or not field:
            raise ConditionError(f"Condition is missing 'field': {dict(expr)!r}")
        operator = OPERATORS.get(op)
        if operator is None:
            raise ConditionError(f"Unknown condition operator: {op}")
        return operator(resolve_path(context, field), expr.get("value"))

    @staticmethod
    def _clauses(expr: Mapping[str, Any], key: str):
        clauses = expr[key]
        if not isinstance(clauses, list):
            raise ConditionError(f"'{key}' requires a list of conditions")
        return clauses
