"""Condition evaluation for edges, condition nodes and filter nodes."""

import re
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from ..config import ConditionFailurePolicy
from ..models.core import Condition, ConditionType
from .exceptions import ConditionEvaluationError, WorkflowEngineError
from .expressions import evaluate_expression, resolve_field


logger = logging.getLogger(__name__)

ConditionLike = Union[Condition, Dict[str, Any]]


@dataclass
class EdgeDecision:
    """Outcome of evaluating an edge's condition."""
    traverse: bool
    evaluated: bool = False
    warning: Optional[str] = None
    error: Optional[str] = None


def get_path(data: Any, path: Optional[str]) -> Any:
    """Read a dotted path from data; an empty path returns the data itself."""
    if not path:
        return data
    return resolve_field(data, path)


def set_path(data: Dict[str, Any], path: str, value: Any) -> Dict[str, Any]:
    """Write value at a dotted path, creating intermediate dicts as needed."""
    keys = path.split(".")
    current = data
    for key in keys[:-1]:
        child = current.get(key)
        if not isinstance(child, dict):
            child = {}
            current[key] = child
        current = child
    current[keys[-1]] = value
    return data


def coerce_condition(condition: ConditionLike) -> Condition:
    """Turn a raw config dict into a Condition model."""
    if isinstance(condition, Condition):
        return condition
    if not isinstance(condition, dict):
        raise ConditionEvaluationError(f"Condition must be an object, got {type(condition).__name__}")
    try:
        return Condition.model_validate(condition)
    except ValidationError as e:
        raise ConditionEvaluationError(f"Malformed condition: {e.errors()[0]['msg']}") from e


def _to_number(value: Any, condition_type: str) -> float:
    if isinstance(value, bool) or value is None:
        raise ConditionEvaluationError(
            f"Value {value!r} is not numeric",
            condition_type=condition_type
        )
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConditionEvaluationError(
            f"Value {value!r} is not numeric",
            condition_type=condition_type
        ) from e


def _contains(container: Any, item: Any, condition_type: str) -> bool:
    if isinstance(container, str):
        return str(item) in container
    if isinstance(container, (list, tuple, set, dict)):
        try:
            return item in container
        except TypeError as e:
            raise ConditionEvaluationError(
                f"Cannot test membership of {item!r} in {type(container).__name__}: {e}",
                condition_type=condition_type
            ) from e
    if container is None:
        return False
    return str(item) in str(container)


class ConditionEvaluator:
    """Evaluates conditions and applies the failure policy to edge conditions."""

    def __init__(self, default_policy: ConditionFailurePolicy = ConditionFailurePolicy.CONTINUE):
        self.default_policy = default_policy

    def evaluate(
        self,
        condition: Optional[ConditionLike],
        data: Any,
        variables: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Evaluate a single condition.

        Field operators read ``condition.field`` from data. Custom expressions
        see the execution variables overlaid with data.

        Raises:
            ConditionEvaluationError: If the condition is malformed or cannot be evaluated
        """
        if condition is None:
            return True
        condition = coerce_condition(condition)
        condition_type = condition.type

        if condition_type == ConditionType.SUCCESS.value:
            return not (isinstance(data, dict) and data.get("error") is not None)
        if condition_type == ConditionType.ERROR.value:
            return isinstance(data, dict) and data.get("error") is not None
        if condition_type == ConditionType.CUSTOM.value:
            if not condition.expression:
                raise ConditionEvaluationError("Custom condition requires an expression", condition_type=condition_type)
            scope = dict(variables or {})
            if isinstance(data, dict):
                scope.update(data)
            return evaluate_expression(condition.expression, scope)

        value = get_path(data, condition.field)
        expected = condition.value

        if condition_type == ConditionType.EQUALS.value:
            return value == expected
        if condition_type == ConditionType.NOT_EQUALS.value:
            return value != expected
        if condition_type == ConditionType.CONTAINS.value:
            return _contains(value, expected, condition_type)
        if condition_type == ConditionType.NOT_CONTAINS.value:
            return not _contains(value, expected, condition_type)
        if condition_type == ConditionType.GREATER_THAN.value:
            return _to_number(value, condition_type) > _to_number(expected, condition_type)
        if condition_type == ConditionType.LESS_THAN.value:
            return _to_number(value, condition_type) < _to_number(expected, condition_type)
        if condition_type == ConditionType.EXISTS.value:
            return value is not None
        if condition_type == ConditionType.REGEX.value:
            if not isinstance(expected, str):
                raise ConditionEvaluationError("Regex condition requires a string pattern", condition_type=condition_type)
            try:
                return re.search(expected, "" if value is None else str(value)) is not None
            except re.error as e:
                raise ConditionEvaluationError(f"Invalid regex {expected!r}: {e}", condition_type=condition_type) from e

        raise ConditionEvaluationError(f"Unknown condition type: {condition_type}", condition_type=condition_type)

    def evaluate_all(
        self,
        conditions: list,
        logic: str,
        data: Any,
        variables: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Combine several conditions with AND or OR logic."""
        logic = (logic or "AND").upper()
        if logic not in ("AND", "OR"):
            raise ConditionEvaluationError(f"Unsupported condition logic: {logic}")
        results = (self.evaluate(condition, data, variables) for condition in conditions)
        return all(results) if logic == "AND" else any(results)

    def _evaluate_edge_condition(self, condition: ConditionLike, node_result: Any, variables: Optional[Dict[str, Any]]) -> bool:
        """Evaluate an edge condition; any unexpected failure is reported as a ConditionEvaluationError."""
        try:
            return self.evaluate(condition, node_result, variables)
        except WorkflowEngineError:
            raise
        except Exception as e:
            condition_type = condition.get("type") if isinstance(condition, dict) else getattr(condition, "type", None)
            raise ConditionEvaluationError(
                f"Condition raised {type(e).__name__}: {e}",
                condition_type=condition_type if isinstance(condition_type, str) else None
            ) from e

    def evaluate_edge(
        self,
        condition: Optional[ConditionLike],
        node_result: Any,
        variables: Optional[Dict[str, Any]] = None,
        policy: Optional[ConditionFailurePolicy] = None
    ) -> EdgeDecision:
        """
        Decide whether an edge should be traversed.

        An evaluation failure resolves to the condition's own ``fallback`` when
        set, otherwise to the failure policy (workflow setting, then engine
        default). Either way a warning is reported.
        """
        if condition is None:
            return EdgeDecision(traverse=True)

        try:
            return EdgeDecision(traverse=self._evaluate_edge_condition(condition, node_result, variables), evaluated=True)
        except ConditionEvaluationError as e:
            fallback = condition.fallback if isinstance(condition, Condition) else (
                condition.get("fallback") if isinstance(condition, dict) else None
            )
            if isinstance(fallback, bool):
                traverse = fallback
            else:
                traverse = (policy or self.default_policy) == ConditionFailurePolicy.CONTINUE
            action = "traversing" if traverse else "blocking"
            logger.warning(f"Condition evaluation failed, {action} edge: {e.message}")
            return EdgeDecision(
                traverse=traverse,
                evaluated=True,
                warning=f"Condition evaluation failed ({e.message}); {action} edge",
                error=e.message
            )
