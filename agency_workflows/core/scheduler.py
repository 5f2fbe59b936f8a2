"""Breadth-first execution of a workflow graph."""

import time
from collections import deque
from typing import Any, Callable, Deque, Optional, Set

from ..config import ConditionFailurePolicy
from ..models.core import ExecutionResult, ExecutionStatusEnum
from .aggregator import ResultAggregator
from .conditions import ConditionEvaluator
from .context import ExecutionContext
from .exceptions import ExecutionTimeoutError
from .graph_builder import ExecutionGraph, GraphNode
from .logging import get_logger
from .node_executor import NodeExecutor


logger = get_logger(__name__)

TIMEOUT_WARNING = "Workflow execution timed out"
TIMEOUT_ERROR = "Execution timeout"


class ExecutionScheduler:
    """
    Walks an ExecutionGraph with a FIFO queue seeded by its start nodes.

    Each node runs at most once per run. After every node the elapsed time is
    compared with the run budget; the same budget also bounds each node's
    dispatch, so a slow node is cancelled rather than overshooting.
    """

    def __init__(
        self,
        executor: NodeExecutor,
        evaluator: ConditionEvaluator,
        clock: Callable[[], float] = time.monotonic
    ):
        self.executor = executor
        self.evaluator = evaluator
        self.clock = clock

    async def run(
        self,
        graph: ExecutionGraph,
        context: ExecutionContext,
        aggregator: ResultAggregator,
        budget: float,
        policy: Optional[ConditionFailurePolicy] = None
    ) -> ExecutionResult:
        """
        Execute the graph and return the finalized result.

        Args:
            graph: Graph built for this run
            context: Shared execution context
            aggregator: Collector for results, errors and warnings
            budget: Run budget in seconds
            policy: Workflow-level condition failure policy
        """
        start = self.clock()
        deadline = start + budget
        queue: Deque[str] = deque(graph.start_nodes)
        visited: Set[str] = set()

        def elapsed_ms() -> float:
            return (self.clock() - start) * 1000

        logger.info(f"Starting execution {context.execution_id} with {len(graph)} nodes")

        while queue:
            node_id = queue.popleft()
            if node_id in visited:
                continue
            visited.add(node_id)
            graph_node = graph.get(node_id)
            node = graph_node.node

            outcome = await self.executor.execute(node, context, deadline)
            aggregator.record_node(outcome.to_node_result())
            if outcome.retries:
                aggregator.record_retries(outcome.retries)

            if isinstance(outcome.error, ExecutionTimeoutError):
                context.cancellation.cancel(TIMEOUT_ERROR)
                return self._timed_out(aggregator, elapsed_ms())

            if outcome.succeeded:
                context.variables.setdefault("nodeResults", {})[node_id] = outcome.result
                self._expand(graph_node, outcome.result, context, aggregator, queue, visited, policy)
            else:
                message = f"Error executing node {node_id}: {outcome.error.message}"
                aggregator.add_error(message, node_id)
                fallback = node.config.get("fallbackNode")

                if fallback and graph.get(fallback) is not None and fallback not in visited:
                    queue.append(fallback)
                    aggregator.record_fallback()
                    aggregator.add_warning(f"Recovered from error in node {node_id}")
                    logger.info(f"Node {node_id} failed, continuing with fallback node {fallback}")
                elif node.config.get("stopOnError", True) is not False:
                    logger.error(f"Execution {context.execution_id} stopped: {message}")
                    return aggregator.finalize(ExecutionStatusEnum.FAILED, elapsed_ms())
                else:
                    if fallback:
                        aggregator.add_warning(f"Fallback node {fallback} for node {node_id} is not available")
                    aggregator.add_warning(f"Continuing execution despite error in node {node_id}")
                    self._expand(
                        graph_node, {"error": outcome.error.message}, context, aggregator, queue, visited, policy
                    )

            if self.clock() - start > budget:
                context.cancellation.cancel(TIMEOUT_ERROR)
                return self._timed_out(aggregator, elapsed_ms())

        status = aggregator.completion_status(len(graph), aggregator.nodes_executed)
        logger.info(f"Execution {context.execution_id} finished with status {status.value}")
        return aggregator.finalize(status, elapsed_ms())

    def _expand(
        self,
        graph_node: GraphNode,
        result: Any,
        context: ExecutionContext,
        aggregator: ResultAggregator,
        queue: Deque[str],
        visited: Set[str],
        policy: Optional[ConditionFailurePolicy]
    ):
        for edge in graph_node.outgoing_edges:
            decision = self.evaluator.evaluate_edge(edge.condition, result, context.variables, policy)
            aggregator.record_edge(edge, decision)
            if decision.traverse and edge.target not in visited:
                queue.append(edge.target)

    def _timed_out(self, aggregator: ResultAggregator, execution_time: float) -> ExecutionResult:
        aggregator.add_warning(TIMEOUT_WARNING)
        aggregator.add_error(TIMEOUT_ERROR)
        logger.warning(f"Execution {aggregator.execution_id} exceeded its run budget")
        return aggregator.finalize(ExecutionStatusEnum.TIMEOUT, execution_time)
