"""Core workflow execution components."""

from .conditions import ConditionEvaluator, EdgeDecision
from .context import CancellationToken, ExecutionContext
from .engine import WorkflowEngine
from .graph_builder import ExecutionGraph, GraphNode, build_execution_graph
from .handlers import HandlerRegistry, NodeHandler, default_registry
from .node_executor import NodeExecutor, NodeOutcome, RetryConfig
from .scheduler import ExecutionScheduler
from .services import HandlerServices, HttpxClient, CallableRegistry

__all__ = [
    "ConditionEvaluator",
    "EdgeDecision",
    "CancellationToken",
    "ExecutionContext",
    "WorkflowEngine",
    "ExecutionGraph",
    "GraphNode",
    "build_execution_graph",
    "HandlerRegistry",
    "NodeHandler",
    "default_registry",
    "NodeExecutor",
    "NodeOutcome",
    "RetryConfig",
    "ExecutionScheduler",
    "HandlerServices",
    "HttpxClient",
    "CallableRegistry",
]
