"""Tests for condition evaluation and the edge failure policy."""

import pytest

from agency_workflows.config import ConditionFailurePolicy
from agency_workflows.core.conditions import ConditionEvaluator, get_path, set_path
from agency_workflows.core.exceptions import ConditionEvaluationError
from agency_workflows.models.core import Condition


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


@pytest.fixture
def data():
    return {
        "status": "approved",
        "budget": "35000",
        "tags": ["vip"],
        "email": "amara@example.org",
        "profile": {"city": "Leeds", "verified": False},
    }


class TestFieldOperators:
    """Test cases for the field-based operators."""

    @pytest.mark.parametrize("condition, expected", [
        ({"type": "equals", "field": "status", "value": "approved"}, True),
        ({"type": "equals", "field": "profile.city", "value": "York"}, False),
        ({"type": "not_equals", "field": "status", "value": "rejected"}, True),
        ({"type": "contains", "field": "email", "value": "@example"}, True),
        ({"type": "contains", "field": "tags", "value": "vip"}, True),
        ({"type": "not_contains", "field": "tags", "value": "blocked"}, True),
        ({"type": "contains", "field": "missing", "value": "x"}, False),
        ({"type": "greater_than", "field": "budget", "value": 30000}, True),
        ({"type": "less_than", "field": "budget", "value": "30000"}, False),
        ({"type": "exists", "field": "profile.verified"}, True),
        ({"type": "exists", "field": "profile.phone"}, False),
        ({"type": "regex", "field": "email", "value": r"^[a-z]+@example\.org$"}, True),
        ({"type": "regex", "field": "status", "value": "^rej"}, False),
    ])
    def test_operator(self, evaluator, data, condition, expected):
        """Each operator reads the field from the input data."""
        assert evaluator.evaluate(condition, data) is expected

    def test_accepts_condition_model(self, evaluator, data):
        """Conditions may be passed as models or raw dicts."""
        condition = Condition(type="equals", field="status", value="approved")
        assert evaluator.evaluate(condition, data) is True

    def test_missing_condition_always_passes(self, evaluator, data):
        assert evaluator.evaluate(None, data) is True

    @pytest.mark.parametrize("value", [None, True, "lots"])
    def test_non_numeric_comparison(self, evaluator, value):
        """Numeric operators reject values that are not numbers."""
        with pytest.raises(ConditionEvaluationError, match="not numeric"):
            evaluator.evaluate({"type": "greater_than", "field": "amount", "value": 10}, {"amount": value})

    def test_invalid_regex(self, evaluator, data):
        with pytest.raises(ConditionEvaluationError, match="Invalid regex"):
            evaluator.evaluate({"type": "regex", "field": "status", "value": "("}, data)

    def test_unknown_type(self, evaluator, data):
        with pytest.raises(ConditionEvaluationError, match="Unknown condition type: between"):
            evaluator.evaluate({"type": "between", "field": "budget"}, data)

    def test_malformed_condition(self, evaluator, data):
        with pytest.raises(ConditionEvaluationError):
            evaluator.evaluate("status == approved", data)

    @pytest.mark.parametrize("condition_type", ["contains", "not_contains"])
    def test_unhashable_membership(self, evaluator, condition_type):
        """A list cannot be looked up in a dict."""
        with pytest.raises(ConditionEvaluationError, match="Cannot test membership") as exc_info:
            evaluator.evaluate({"type": condition_type, "field": "data", "value": ["x"]}, {"data": {"k": 1}})
        assert exc_info.value.context["condition_type"] == condition_type


class TestResultOperators:
    """Test cases for success, error and custom operators."""

    def test_success_and_error(self, evaluator):
        """success means no error key in the result, error means one is present."""
        ok = {"success": True, "message": "done"}
        failed = {"error": "upstream failure"}
        assert evaluator.evaluate({"type": "success"}, ok) is True
        assert evaluator.evaluate({"type": "error"}, ok) is False
        assert evaluator.evaluate({"type": "success"}, failed) is False
        assert evaluator.evaluate({"type": "error"}, failed) is True

    def test_custom_sees_variables_and_result(self, evaluator):
        """Custom expressions read execution variables overlaid with the node result."""
        condition = {"type": "custom", "expression": "budget > 30000 and result == true"}
        assert evaluator.evaluate(condition, {"result": True}, {"budget": 35000}) is True
        assert evaluator.evaluate(condition, {"result": False}, {"budget": 35000}) is False

    def test_custom_requires_expression(self, evaluator):
        with pytest.raises(ConditionEvaluationError, match="requires an expression"):
            evaluator.evaluate({"type": "custom"}, {})

    def test_evaluate_all(self, evaluator, data):
        conditions = [
            {"type": "equals", "field": "status", "value": "approved"},
            {"type": "equals", "field": "profile.city", "value": "York"},
        ]
        assert evaluator.evaluate_all(conditions, "AND", data) is False
        assert evaluator.evaluate_all(conditions, "or", data) is True
        with pytest.raises(ConditionEvaluationError, match="Unsupported condition logic"):
            evaluator.evaluate_all(conditions, "XOR", data)


class TestEdgeDecisions:
    """Test cases for evaluate_edge and the failure policy."""

    def test_unconditional_edge(self, evaluator):
        decision = evaluator.evaluate_edge(None, {})
        assert decision.traverse is True
        assert decision.evaluated is False

    def test_evaluated_edge(self, evaluator):
        decision = evaluator.evaluate_edge({"type": "equals", "field": "result", "value": True}, {"result": False})
        assert decision.traverse is False
        assert decision.evaluated is True
        assert decision.warning is None

    def test_fail_open_by_default(self, evaluator):
        """A malformed condition traverses the edge and reports a warning."""
        decision = evaluator.evaluate_edge({"type": "custom", "expression": "budget >"}, {})
        assert decision.traverse is True
        assert "traversing edge" in decision.warning
        assert decision.error

    def test_block_policy(self, evaluator):
        decision = evaluator.evaluate_edge(
            {"type": "nonsense"}, {}, policy=ConditionFailurePolicy.BLOCK
        )
        assert decision.traverse is False
        assert "blocking edge" in decision.warning

    def test_engine_default_policy(self):
        evaluator = ConditionEvaluator(ConditionFailurePolicy.BLOCK)
        assert evaluator.evaluate_edge({"type": "nonsense"}, {}).traverse is False

    def test_condition_fallback_overrides_policy(self, evaluator):
        """A condition's own fallback wins over the workflow policy."""
        condition = Condition(type="greater_than", field="amount", value=5, fallback=False)
        decision = evaluator.evaluate_edge(condition, {"amount": "n/a"}, policy=ConditionFailurePolicy.CONTINUE)
        assert decision.traverse is False
        assert "blocking edge" in decision.warning

    def test_unhashable_membership_fails_open(self, evaluator):
        condition = {"type": "contains", "field": "data", "value": ["x"]}
        decision = evaluator.evaluate_edge(condition, {"data": {"k": 1}})
        assert decision.traverse is True
        assert "Cannot test membership" in decision.error

        blocked = evaluator.evaluate_edge(condition, {"data": {"k": 1}}, policy=ConditionFailurePolicy.BLOCK)
        assert blocked.traverse is False
        assert "blocking edge" in blocked.warning

    def test_unexpected_exception_follows_policy(self, evaluator, monkeypatch):
        def explode(condition, node_result, variables=None):
            raise ValueError("bad operand")

        monkeypatch.setattr(evaluator, "evaluate", explode)
        decision = evaluator.evaluate_edge({"type": "equals", "field": "a", "value": 1}, {})

        assert decision.traverse is True
        assert decision.error == "Condition raised ValueError: bad operand"
        assert decision.warning.endswith("traversing edge")


class TestPaths:
    """Test cases for get_path and set_path."""

    def test_get_path_without_path_returns_data(self):
        assert get_path({"a": 1}, None) == {"a": 1}

    def test_set_path_creates_intermediate_dicts(self):
        data = {"student": "not a dict"}
        set_path(data, "student.name.first", "Amara")
        assert data == {"student": {"name": {"first": "Amara"}}}
