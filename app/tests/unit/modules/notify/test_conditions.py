"""Unit tests for rule condition expressions.

Tests cover:
- Comparison, membership and existence operators
- all / any / not combinators
- Missing fields and malformed expressions
- Path resolution into the event context
"""

import pytest

from modules.notify.conditions import ConditionEvaluator, build_context, resolve_path
from modules.notify.domain import ConditionError
from tests.factories.notify import make_event

pytestmark = pytest.mark.unit


@pytest.fixture
def context():
    event = make_event(
        data={
            "order_id": "PO-42",
            "amount": 1500,
            "tags": ["urgent", "capex"],
            "approvers": [{"id": "alice"}, {"id": "bob"}],
            "note": None,
        },
        entity_type="order",
        lifecycle_state="approved",
    )
    return build_context(event)


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


class TestOperators:
    """Tests for individual field operators."""

    @pytest.mark.parametrize(
        "op,value,expected",
        [
            ("eq", 1500, True),
            ("ne", 1500, False),
            ("gt", 1000, True),
            ("gte", 1500, True),
            ("lt", 1500, False),
            ("lte", 1500, True),
        ],
    )
    def test_comparisons(self, evaluator, context, op, value, expected):
        expr = {"field": "data.amount", "op": op, "value": value}

        assert evaluator.evaluate(expr, context) is expected

    def test_default_operator_is_eq(self, evaluator, context):
        assert evaluator.evaluate({"field": "data.order_id", "value": "PO-42"}, context)

    def test_in_and_not_in(self, evaluator, context):
        assert evaluator.evaluate(
            {"field": "event.lifecycle_state", "op": "in", "value": ["approved", "closed"]},
            context,
        )
        assert not evaluator.evaluate(
            {"field": "event.entity_type", "op": "not_in", "value": ["order"]},
            context,
        )

    def test_contains(self, evaluator, context):
        assert evaluator.evaluate(
            {"field": "data.tags", "op": "contains", "value": "urgent"}, context
        )
        assert not evaluator.evaluate(
            {"field": "data.tags", "op": "contains", "value": "opex"}, context
        )

    def test_exists(self, evaluator, context):
        assert evaluator.evaluate({"field": "data.order_id", "op": "exists"}, context)
        assert not evaluator.evaluate({"field": "data.note", "op": "exists"}, context)
        assert evaluator.evaluate(
            {"field": "data.missing", "op": "exists", "value": False}, context
        )

    def test_missing_field(self, evaluator, context):
        assert not evaluator.evaluate(
            {"field": "data.missing", "op": "eq", "value": 1}, context
        )
        assert not evaluator.evaluate(
            {"field": "data.missing", "op": "gt", "value": 1}, context
        )
        assert not evaluator.evaluate(
            {"field": "data.missing", "op": "contains", "value": "x"}, context
        )
        assert evaluator.evaluate({"field": "data.missing", "op": "ne", "value": 1}, context)

    def test_type_mismatch_raises(self, evaluator, context):
        with pytest.raises(ConditionError, match="Cannot compare"):
            evaluator.evaluate({"field": "data.order_id", "op": "gt", "value": 5}, context)

    def test_membership_requires_list(self, evaluator, context):
        with pytest.raises(ConditionError, match="require a list"):
            evaluator.evaluate({"field": "data.amount", "op": "in", "value": 1500}, context)

    def test_contains_on_number_raises(self, evaluator, context):
        with pytest.raises(ConditionError):
            evaluator.evaluate(
                {"field": "data.amount", "op": "contains", "value": 1}, context
            )


class TestCombinators:
    """Tests for all / any / not."""

    def test_all(self, evaluator, context):
        expr = {
            "all": [
                {"field": "data.amount", "op": "gte", "value": 1000},
                {"field": "event.entity_type", "value": "order"},
            ]
        }

        assert evaluator.evaluate(expr, context)

    def test_any(self, evaluator, context):
        expr = {
            "any": [
                {"field": "data.amount", "op": "lt", "value": 10},
                {"field": "data.tags", "op": "contains", "value": "capex"},
            ]
        }

        assert evaluator.evaluate(expr, context)

    def test_not(self, evaluator, context):
        assert evaluator.evaluate(
            {"not": {"field": "data.amount", "op": "lt", "value": 10}}, context
        )

    def test_nested(self, evaluator, context):
        expr = {
            "all": [
                {
                    "any": [
                        {"field": "data.amount", "op": "gt", "value": 5000},
                        {"field": "data.tags", "op": "contains", "value": "urgent"},
                    ]
                },
                {"not": {"field": "event.lifecycle_state", "value": "draft"}},
            ]
        }

        assert evaluator.evaluate(expr, context)

    def test_combinator_requires_list(self, evaluator, context):
        with pytest.raises(ConditionError, match="'all' requires a list"):
            evaluator.evaluate({"all": {"field": "data.amount"}}, context)


class TestMalformedExpressions:
    """Tests for expressions that cannot be evaluated."""

    def test_empty_expression(self, evaluator, context):
        with pytest.raises(ConditionError):
            evaluator.evaluate({}, context)

    def test_missing_field_key(self, evaluator, context):
        with pytest.raises(ConditionError, match="missing 'field'"):
            evaluator.evaluate({"op": "eq", "value": 1}, context)

    def test_unknown_operator(self, evaluator, context):
        with pytest.raises(ConditionError, match="Unknown condition operator: regex"):
            evaluator.evaluate({"field": "data.amount", "op": "regex", "value": ".*"}, context)


class TestResolvePath:
    """Tests for dotted path resolution."""

    def test_event_fields(self, context):
        assert resolve_path(context, "event.tenant_id") == "tenant-1"
        assert resolve_path(context, "event.event_type") == "order.approved"

    def test_list_index(self, context):
        assert resolve_path(context, "data.approvers.1.id") == "bob"

    def test_out_of_range_index_is_missing(self, evaluator, context):
        assert not evaluator.evaluate(
            {"field": "data.approvers.5.id", "op": "exists"}, context
        )
