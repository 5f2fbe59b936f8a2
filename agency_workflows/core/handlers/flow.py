"""Handlers that shape control and data flow: triggers, conditions, delays, transforms, loops and parallel branches."""

import asyncio
import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from ...models.core import NodeDefinition, NodeType, is_valid_path
from ..conditions import get_path, set_path
from ..context import CancellationToken, ExecutionContext
from ..exceptions import ConfigurationError, HandlerError, WorkflowEngineError
from .base import NodeHandler, completed, simulated


logger = logging.getLogger(__name__)

DELAY_UNITS_MS = {
    "ms": 1,
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
}


def _config_path(node: NodeDefinition, key: str):
    path = node.config.get(key)
    if path is not None and not (isinstance(path, str) and is_valid_path(path)):
        raise ConfigurationError(
            f"Node '{node.id}' has an invalid {key}: {path!r}",
            node_id=node.id,
            config_key=key
        )
    return path


def _inline_node(parent: NodeDefinition, definition: Any, default_id: str) -> NodeDefinition:
    """Build an inline node (loop body, parallel branch) from its config dict."""
    if isinstance(definition, NodeDefinition):
        return definition
    if not isinstance(definition, dict):
        raise ConfigurationError(
            f"Inline node of '{parent.id}' must be an object",
            node_id=parent.id
        )
    try:
        return NodeDefinition.model_validate({"id": default_id, **definition})
    except ValidationError as e:
        raise ConfigurationError(
            f"Inline node of '{parent.id}' is invalid: {e.errors()[0]['msg']}",
            node_id=parent.id
        ) from e


class TriggerHandler(NodeHandler):
    node_type = NodeType.TRIGGER.value
    description = "Entry point; passes the trigger data through"

    async def execute(self, node, context, token):
        return completed(
            "Trigger executed",
            data=context.trigger_data,
            triggerType=node.config.get("triggerType", "manual")
        )


class ConditionHandler(NodeHandler):
    node_type = NodeType.CONDITION.value
    description = "Evaluates a condition (or several combined with AND/OR) against the execution variables"
    required_fields = (("condition", "conditions"),)

    def validate(self, node):
        super().validate(node)
        conditions = node.config.get("conditions")
        if node.config.get("condition") is None and not isinstance(conditions, list):
            raise ConfigurationError(
                f"Node '{node.id}' conditions must be a list",
                node_id=node.id,
                config_key="conditions"
            )
        logic = str(node.config.get("logic", "AND")).upper()
        if logic not in ("AND", "OR"):
            raise ConfigurationError(
                f"Node '{node.id}' has unsupported logic '{logic}'",
                node_id=node.id,
                config_key="logic"
            )

    async def execute(self, node, context, token):
        evaluator = context.evaluator
        condition = node.config.get("condition")
        if condition is not None:
            result = evaluator.evaluate(condition, context.variables, context.variables)
            condition_type = condition.get("type") if isinstance(condition, dict) else getattr(condition, "type", None)
            return completed("Condition evaluated", result=result, conditionType=condition_type)

        logic = str(node.config.get("logic", "AND")).upper()
        result = evaluator.evaluate_all(node.config["conditions"], logic, context.variables, context.variables)
        return completed("Conditions evaluated", result=result, conditionType="compound", logic=logic)


class DelayHandler(NodeHandler):
    node_type = NodeType.DELAY.value
    description = "Waits for a duration in ms, s, m or h"

    def validate(self, node):
        duration = node.config.get("duration", 1000)
        if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0:
            raise ConfigurationError(
                f"Node '{node.id}' duration must be a non-negative number",
                node_id=node.id,
                config_key="duration"
            )
        if node.config.get("unit", "ms") not in DELAY_UNITS_MS:
            raise ConfigurationError(
                f"Node '{node.id}' unit must be one of {sorted(DELAY_UNITS_MS)}",
                node_id=node.id,
                config_key="unit"
            )

    async def execute(self, node, context, token):
        duration = node.config.get("duration", 1000)
        unit = node.config.get("unit", "ms")
        delay_ms = duration * DELAY_UNITS_MS[unit]

        if context.test_mode:
            return simulated(f"Delay skipped (test mode): {duration}{unit}", actualDelay=0)

        sleep = context.services.sleep if context.services and context.services.sleep else token.sleep
        await sleep(delay_ms / 1000.0)
        token.raise_if_cancelled()
        return completed(f"Delay executed: {duration}{unit}", actualDelay=delay_ms)


class TransformHandler(NodeHandler):
    """Applies uppercase, lowercase, extract or template transformations to context data."""

    node_type = NodeType.TRANSFORM.value
    description = "Transforms context data (uppercase, lowercase, extract, template)"
    required_fields = ("transformation",)
    kinds = ("uppercase", "lowercase", "extract", "template")

    def _settings(self, node: NodeDefinition) -> Dict[str, Any]:
        transformation = node.config["transformation"]
        if isinstance(transformation, str):
            settings = {"type": transformation}
            for key in ("fields", "template"):
                if key in node.config:
                    settings[key] = node.config[key]
            return settings
        if isinstance(transformation, dict):
            return transformation
        raise ConfigurationError(
            f"Node '{node.id}' transformation must be a name or an object",
            node_id=node.id,
            config_key="transformation"
        )

    def validate(self, node):
        super().validate(node)
        settings = self._settings(node)
        kind = settings.get("type")
        if kind not in self.kinds:
            raise ConfigurationError(
                f"Node '{node.id}' has unknown transformation '{kind}'",
                node_id=node.id,
                config_key="transformation"
            )
        if kind == "extract" and not isinstance(settings.get("fields"), list):
            raise ConfigurationError(
                f"Node '{node.id}' extract transformation requires a list of fields",
                node_id=node.id,
                config_key="fields"
            )
        if kind == "template" and not isinstance(settings.get("template"), str):
            raise ConfigurationError(
                f"Node '{node.id}' template transformation requires a template string",
                node_id=node.id,
                config_key="template"
            )
        _config_path(node, "inputPath")
        _config_path(node, "outputPath")

    async def execute(self, node, context, token):
        settings = self._settings(node)
        kind = settings["type"]
        input_path = node.config.get("inputPath")
        output_path = node.config.get("outputPath")
        data = get_path(context.variables, input_path)

        if kind == "uppercase":
            output = _map_strings(data, str.upper)
        elif kind == "lowercase":
            output = _map_strings(data, str.lower)
        elif kind == "extract":
            output = {field: get_path(data, field) for field in settings["fields"]}
        else:
            output = context.render(settings["template"], data if isinstance(data, dict) else {"value": data})

        if output_path:
            set_path(context.variables, output_path, output)

        return completed(
            "Data transformed",
            transformation=kind,
            output=output,
            outputPath=output_path
        )


def _map_strings(value: Any, func) -> Any:
    if isinstance(value, str):
        return func(value)
    if isinstance(value, dict):
        return {key: _map_strings(item, func) for key, item in value.items()}
    if isinstance(value, list):
        return [_map_strings(item, func) for item in value]
    return value


class FilterHandler(NodeHandler):
    node_type = NodeType.FILTER.value
    description = "Passes data on only when a condition holds"
    required_fields = ("condition",)

    def validate(self, node):
        super().validate(node)
        _config_path(node, "inputPath")

    async def execute(self, node, context, token):
        data = get_path(context.variables, node.config.get("inputPath"))
        passes = context.evaluator.evaluate(node.config["condition"], data, context.variables)
        return completed(
            "Data passed filter" if passes else "Data filtered out",
            passes=passes,
            data=data if passes else None
        )


class LoopHandler(NodeHandler):
    """
    Iterates over ``items`` (a list or a path to one) or a fixed number of
    ``iterations``, bounded by ``maxIterations``.

    An optional inline ``body`` node runs once per iteration with ``item`` and
    ``index`` bound in its variables. The body never re-enters the outer graph.
    """

    node_type = NodeType.LOOP.value
    description = "Iterates over items or a count, optionally running an inline body node"
    required_fields = (("items", "iterations"),)

    def validate(self, node):
        super().validate(node)
        iterations = node.config.get("iterations")
        if iterations is not None and (isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 0):
            raise ConfigurationError(
                f"Node '{node.id}' iterations must be a non-negative integer",
                node_id=node.id,
                config_key="iterations"
            )
        max_iterations = node.config.get("maxIterations")
        if max_iterations is not None and (not isinstance(max_iterations, int) or max_iterations < 1):
            raise ConfigurationError(
                f"Node '{node.id}' maxIterations must be a positive integer",
                node_id=node.id,
                config_key="maxIterations"
            )
        body = node.config.get("body")
        if body is not None:
            _inline_node(node, body, f"{node.id}.body")

    def _items(self, node: NodeDefinition, context: ExecutionContext) -> List[Any]:
        items = node.config.get("items")
        if items is None:
            return list(range(node.config["iterations"]))
        if isinstance(items, str):
            resolved = context.get(items)
            if not isinstance(resolved, list):
                raise HandlerError(
                    f"Loop items path '{items}' does not resolve to a list",
                    node_id=node.id,
                    node_type=node.type
                )
            return resolved
        if not isinstance(items, list):
            raise HandlerError("Loop items must be a list", node_id=node.id, node_type=node.type)
        return items

    async def execute(self, node, context, token):
        items = self._items(node, context)
        max_iterations = node.config.get("maxIterations", context.max_loop_iterations)
        if len(items) > max_iterations:
            context.warn(f"Loop node {node.id} capped at {max_iterations} of {len(items)} iterations")
            items = items[:max_iterations]

        body_config = node.config.get("body")
        body = _inline_node(node, body_config, f"{node.id}.body") if body_config is not None else None

        results = []
        for index, item in enumerate(items):
            token.raise_if_cancelled()
            if body is None:
                results.append({"index": index, "item": item})
                continue
            iteration_context = context.derive({"item": item, "index": index})
            try:
                output = await context.executor.dispatch(body, iteration_context, token)
            except WorkflowEngineError as e:
                raise HandlerError(
                    f"Loop iteration {index} failed: {e.message}",
                    node_id=node.id,
                    node_type=node.type,
                    details={"iteration": index}
                ) from e
            results.append({"index": index, "item": item, "result": output})

        return completed(
            "Loop executed",
            iterations=len(results),
            results=results,
            simulated=context.test_mode
        )


class ParallelHandler(NodeHandler):
    """Runs inline branch nodes concurrently on isolated copies of the context."""

    node_type = NodeType.PARALLEL.value
    description = "Runs inline branch nodes concurrently and joins on all of them"
    required_fields = ("branches",)

    def _branches(self, node: NodeDefinition) -> List[NodeDefinition]:
        branches = node.config.get("branches")
        if not isinstance(branches, list) or not branches:
            raise ConfigurationError(
                f"Node '{node.id}' requires a non-empty list of branches",
                node_id=node.id,
                config_key="branches"
            )
        return [
            _inline_node(node, branch, f"{node.id}.branch{index}")
            for index, branch in enumerate(branches)
        ]

    def validate(self, node):
        super().validate(node)
        self._branches(node)

    async def execute(self, node, context, token):
        branches = self._branches(node)
        outcomes = await asyncio.gather(
            *(context.executor.dispatch(branch, context.derive(), token) for branch in branches),
            return_exceptions=True
        )

        results = []
        failures = []
        for branch, outcome in zip(branches, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                message = outcome.message if isinstance(outcome, WorkflowEngineError) else str(outcome)
                failures.append({"nodeId": branch.id, "error": message})
                results.append({"nodeId": branch.id, "error": message})
            else:
                results.append({"nodeId": branch.id, "result": outcome})

        if failures:
            raise HandlerError(
                f"{len(failures)} of {len(branches)} parallel branches failed",
                node_id=node.id,
                node_type=node.type,
                details={"failedBranches": failures}
            )

        return completed(
            "Parallel execution completed",
            branches=results,
            completed=len(results),
            simulated=context.test_mode
        )
