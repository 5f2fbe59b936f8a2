"""Core Pydantic models for the workflow engine."""

import re
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..config import ConditionFailurePolicy


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys, populated by either name."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WorkflowStatus(str, Enum):
    """Lifecycle status of a workflow definition."""
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ARCHIVED = "ARCHIVED"


class NodeType(str, Enum):
    """Built-in node types."""
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    DELAY = "delay"
    NOTIFICATION = "notification"
    EMAIL = "email"
    API = "api"
    DATABASE = "database"
    WEBHOOK = "webhook"
    TRANSFORM = "transform"
    FILTER = "filter"
    LOOP = "loop"
    PARALLEL = "parallel"
    HTTP = "http"
    AI = "ai"
    INTEGRATION = "integration"


class ConditionType(str, Enum):
    """Operators understood by the condition evaluator."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    EXISTS = "exists"
    REGEX = "regex"
    SUCCESS = "success"
    ERROR = "error"
    CUSTOM = "custom"


class ExecutionStatusEnum(str, Enum):
    """Enumeration of workflow execution statuses."""
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PARTIAL = "PARTIAL"
    TIMEOUT = "TIMEOUT"


class Condition(CamelModel):
    """A predicate attached to an edge or used by condition/filter nodes.

    The type is kept as a free string so that an unknown operator surfaces
    at evaluation time, where the failure policy applies, rather than
    rejecting the whole workflow.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str = Field(..., description="Operator name, see ConditionType")
    field: Optional[str] = Field(None, description="Dotted path of the value under test")
    value: Any = Field(None, description="Operand compared against the field value")
    expression: Optional[str] = Field(None, description="Boolean expression for custom conditions")
    fallback: Optional[bool] = Field(None, description="Result to use when evaluation fails")


class NodeDefinition(CamelModel):
    """Definition of a workflow node."""
    id: str = Field(..., description="Unique identifier for the node")
    type: str = Field(..., description="Node type used to look up its handler")
    label: Optional[str] = Field(None, description="Display label")
    config: Dict[str, Any] = Field(default_factory=dict, description="Type-specific configuration")

    @model_validator(mode='before')
    @classmethod
    def lift_authoring_data(cls, values):
        """Accept the authoring payload shape ``{"data": {"config": ..., "label": ...}}``."""
        if isinstance(values, dict) and isinstance(values.get("data"), dict):
            values = dict(values)
            data = values.pop("data")
            values.setdefault("config", data.get("config") or {})
            if data.get("label") is not None:
                values.setdefault("label", data["label"])
        return values

    @field_validator('id', 'type')
    @classmethod
    def validate_not_blank(cls, value):
        """Ensure id and type are not blank."""
        if not value or not value.strip():
            raise ValueError("Node id and type cannot be empty")
        return value.strip()

    @field_validator('config', mode='before')
    @classmethod
    def default_config(cls, config):
        """Treat a null config as empty."""
        return config or {}


class EdgeDefinition(CamelModel):
    """Definition of an edge between workflow nodes."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12], description="Edge identifier")
    source: str = Field(..., description="Source node ID")
    target: str = Field(..., description="Target node ID")
    label: Optional[str] = Field(None, description="Display label")
    condition: Optional[Condition] = Field(None, description="Condition gating traversal")


class WorkflowSettings(CamelModel):
    """Per-workflow execution settings."""
    condition_failure_policy: Optional[ConditionFailurePolicy] = Field(
        None, description="Overrides the engine default for conditions that fail to evaluate"
    )
    strict_edges: Optional[bool] = Field(
        None, description="Overrides the engine default for edges that reference unknown nodes"
    )


class WorkflowDefinition(CamelModel):
    """Complete definition of a workflow graph."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Workflow ID")
    name: str = Field("Untitled workflow", description="Workflow name")
    description: Optional[str] = Field(None, description="Workflow description")
    status: WorkflowStatus = Field(WorkflowStatus.DRAFT, description="Lifecycle status")
    nodes: List[NodeDefinition] = Field(default_factory=list, description="Nodes in declaration order")
    edges: List[EdgeDefinition] = Field(default_factory=list, description="Edges in declaration order")
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings, description="Execution settings")
    execution_count: int = Field(0, description="Number of executions so far")
    last_executed_at: Optional[datetime] = Field(None, description="Timestamp of the last execution")
    average_execution_time: float = Field(0.0, description="Running average execution time in ms")
    success_rate: float = Field(0.0, description="Fraction of successful executions")

    @field_validator('nodes')
    @classmethod
    def validate_unique_node_ids(cls, nodes):
        """Ensure all node IDs are unique."""
        node_ids = [node.id for node in nodes]
        if len(node_ids) != len(set(node_ids)):
            raise ValueError("All node IDs must be unique")
        return nodes

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        """Ensure workflow name is not empty."""
        if not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()


class ExecutionRequest(CamelModel):
    """Caller input for a single workflow execution."""
    trigger_data: Dict[str, Any] = Field(default_factory=dict, description="Data of the triggering event")
    context: Dict[str, Any] = Field(default_factory=dict, description="Additional caller context")
    test_mode: bool = Field(False, description="Dry run without external side effects")
    debug_mode: bool = Field(False, description="Collect debug logs in the result")
    timeout: Optional[int] = Field(None, description="Run budget override in milliseconds")

    @field_validator('trigger_data', 'context', mode='before')
    @classmethod
    def default_mapping(cls, value):
        """Treat null payloads as empty."""
        return {} if value is None else value

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, timeout):
        """Ensure timeout is positive if specified."""
        if timeout is not None and timeout <= 0:
            raise ValueError("Timeout must be a positive number of milliseconds")
        return timeout


class NodeResult(CamelModel):
    """Outcome of one node within an execution."""
    node_id: str = Field(..., description="ID of the executed node")
    node_type: str = Field(..., description="Type of the executed node")
    result: Optional[Any] = Field(None, description="Handler result payload")
    error: Optional[str] = Field(None, description="Error message if the node failed")
    execution_time: float = Field(0.0, description="Execution time in milliseconds")
    attempts: int = Field(1, description="Number of attempts including retries")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Completion timestamp")

    @property
    def succeeded(self) -> bool:
        return self.error is None


class PerformanceMetrics(CamelModel):
    """Timing summary of an execution."""
    total_time: float = 0.0
    average_node_time: float = 0.0
    slowest_node: Optional[str] = None
    fastest_node: Optional[str] = None


class ConditionalPaths(CamelModel):
    """Edge ids grouped by how their conditions resolved."""
    taken: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    evaluated: List[str] = Field(default_factory=list)


class ErrorHandlingStats(CamelModel):
    """Counters for retries and recoveries during an execution."""
    retries: int = 0
    fallbacks: int = 0
    recovered: int = 0


class DebugLog(CamelModel):
    """Detailed logs collected when an execution runs in debug mode."""
    node_execution_log: List[Dict[str, Any]] = Field(default_factory=list)
    condition_evaluation_log: List[Dict[str, Any]] = Field(default_factory=list)
    error_log: List[Dict[str, Any]] = Field(default_factory=list)


class ExecutionResult(CamelModel):
    """Final, structured result of a workflow execution."""
    success: bool = Field(..., description="Whether the run finished without errors")
    execution_id: str = Field(..., description="Unique identifier of the execution")
    workflow_id: Optional[str] = Field(None, description="ID of the executed workflow")
    results: List[NodeResult] = Field(default_factory=list, description="Node results in completion order")
    errors: List[str] = Field(default_factory=list, description="Error messages")
    warnings: List[str] = Field(default_factory=list, description="Warning messages")
    execution_time: float = Field(0.0, description="Total execution time in milliseconds")
    nodes_executed: int = Field(0, description="Number of nodes that completed successfully")
    status: ExecutionStatusEnum = Field(..., description="Terminal execution status")
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    conditional_paths: ConditionalPaths = Field(default_factory=ConditionalPaths)
    error_handling: ErrorHandlingStats = Field(default_factory=ErrorHandlingStats)
    debug: Optional[DebugLog] = Field(None, description="Debug logs when requested")

    def audit_summary(self) -> Dict[str, Any]:
        """Fields written to the audit trail for this execution."""
        return {
            "executionId": self.execution_id,
            "status": self.status.value,
            "executionTime": self.execution_time,
            "nodesExecuted": self.nodes_executed,
            "errorCount": len(self.errors),
            "warningCount": len(self.warnings),
        }


class ExecutionRecord(CamelModel):
    """Persisted view of an execution as returned by the host layer."""
    execution_id: str
    workflow_id: str
    status: ExecutionStatusEnum
    test_mode: bool = False
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[ExecutionResult] = None


class WorkflowSummary(CamelModel):
    """Summary information about a workflow."""
    id: str
    name: str
    status: WorkflowStatus
    node_count: int
    execution_count: int
    last_executed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


_PATH_SEGMENT = re.compile(r"^[^.\s]+(\.[^.\s]+)*$")


def is_valid_path(path: str) -> bool:
    """Whether a dotted path such as ``student.address.city`` is well formed."""
    return bool(path) and bool(_PATH_SEGMENT.match(path))
