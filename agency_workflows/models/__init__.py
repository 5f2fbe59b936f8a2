"""Data models for the workflow engine."""

from .core import (
    WorkflowStatus,
    NodeType,
    ConditionType,
    ExecutionStatusEnum,
    Condition,
    NodeDefinition,
    EdgeDefinition,
    WorkflowSettings,
    WorkflowDefinition,
    ExecutionRequest,
    NodeResult,
    PerformanceMetrics,
    ConditionalPaths,
    ErrorHandlingStats,
    DebugLog,
    ExecutionResult,
    ExecutionRecord,
    WorkflowSummary,
)

__all__ = [
    "WorkflowStatus",
    "NodeType",
    "ConditionType",
    "ExecutionStatusEnum",
    "Condition",
    "NodeDefinition",
    "EdgeDefinition",
    "WorkflowSettings",
    "WorkflowDefinition",
    "ExecutionRequest",
    "NodeResult",
    "PerformanceMetrics",
    "ConditionalPaths",
    "ErrorHandlingStats",
    "DebugLog",
    "ExecutionResult",
    "ExecutionRecord",
    "WorkflowSummary",
]
