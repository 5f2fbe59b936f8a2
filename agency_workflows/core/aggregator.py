"""Collects node results, errors and warnings into the final ExecutionResult."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.core import (
    ConditionalPaths,
    DebugLog,
    EdgeDefinition,
    ErrorHandlingStats,
    ExecutionResult,
    ExecutionStatusEnum,
    NodeResult,
    PerformanceMetrics,
)
from .conditions import EdgeDecision


class ResultAggregator:
    """
    Mutable state of one run, owned by the scheduler loop.

    Results are kept in completion order. ``finalize`` produces the single
    ExecutionResult returned to the caller.
    """

    def __init__(self, execution_id: str, workflow_id: Optional[str] = None, debug_mode: bool = False):
        self.execution_id = execution_id
        self.workflow_id = workflow_id
        self.results: List[NodeResult] = []
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.nodes_executed = 0
        self.conditional_paths = ConditionalPaths()
        self.error_handling = ErrorHandlingStats()
        self.debug = DebugLog() if debug_mode else None

    def record_node(self, node_result: NodeResult):
        self.results.append(node_result)
        if node_result.succeeded:
            self.nodes_executed += 1
        if self.debug is not None:
            self.debug.node_execution_log.append({
                "nodeId": node_result.node_id,
                "nodeType": node_result.node_type,
                "executionTime": node_result.execution_time,
                "attempts": node_result.attempts,
                "success": node_result.succeeded,
                "timestamp": node_result.timestamp.isoformat(),
            })

    def add_error(self, message: str, node_id: Optional[str] = None):
        self.errors.append(message)
        if self.debug is not None:
            self.debug.error_log.append({
                "nodeId": node_id,
                "error": message,
                "timestamp": datetime.utcnow().isoformat(),
            })

    def add_warning(self, message: str):
        self.warnings.append(message)

    def record_edge(self, edge: EdgeDefinition, decision: EdgeDecision):
        """Track how a conditional edge resolved."""
        if edge.condition is None:
            return
        self.conditional_paths.evaluated.append(edge.id)
        if decision.traverse:
            self.conditional_paths.taken.append(edge.id)
        else:
            self.conditional_paths.skipped.append(edge.id)
        if decision.warning:
            self.add_warning(decision.warning)
        if self.debug is not None:
            entry: Dict[str, Any] = {
                "edgeId": edge.id,
                "source": edge.source,
                "target": edge.target,
                "conditionType": edge.condition.type,
                "traverse": decision.traverse,
            }
            if decision.error:
                entry["error"] = decision.error
            self.debug.condition_evaluation_log.append(entry)

    def record_retries(self, count: int):
        self.error_handling.retries += count

    def record_fallback(self):
        self.error_handling.fallbacks += 1
        self.error_handling.recovered += 1

    def completion_status(self, total_nodes: int, executed_nodes: int) -> ExecutionStatusEnum:
        """Status of a run whose queue drained without an early exit."""
        if executed_nodes == total_nodes and not self.errors:
            return ExecutionStatusEnum.COMPLETED
        return ExecutionStatusEnum.PARTIAL

    def _performance(self, execution_time: float) -> PerformanceMetrics:
        if not self.results:
            return PerformanceMetrics(total_time=execution_time)
        slowest = max(self.results, key=lambda result: result.execution_time)
        fastest = min(self.results, key=lambda result: result.execution_time)
        return PerformanceMetrics(
            total_time=execution_time,
            average_node_time=sum(result.execution_time for result in self.results) / len(self.results),
            slowest_node=slowest.node_id,
            fastest_node=fastest.node_id
        )

    def finalize(self, status: ExecutionStatusEnum, execution_time: float) -> ExecutionResult:
        return ExecutionResult(
            success=not self.errors and status not in (ExecutionStatusEnum.FAILED, ExecutionStatusEnum.TIMEOUT),
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            results=list(self.results),
            errors=list(self.errors),
            warnings=list(self.warnings),
            execution_time=execution_time,
            nodes_executed=self.nodes_executed,
            status=status,
            performance=self._performance(execution_time),
            conditional_paths=self.conditional_paths,
            error_handling=self.error_handling,
            debug=self.debug
        )
