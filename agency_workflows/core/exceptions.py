"""Exception hierarchy for the workflow engine.

Each error carries a ``category`` and ``severity`` for logs and API
responses, a ``details`` dict with machine-readable data about the failure,
and a ``context`` dict naming where it happened (workflow, node, table...).
``recoverable`` marks failures a retry might fix.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    category = "execution"
    severity = "medium"
    recoverable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        self.context = {key: value for key, value in (context or {}).items() if value is not None}
        if recoverable is not None:
            self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc)

    @property
    def error_code(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": {
                **self.details,
                "severity": self.severity,
                "category": self.category,
                "recoverable": self.recoverable,
                "timestamp": self.timestamp.isoformat()
            },
            "context": self.context
        }


class GraphError(WorkflowEngineError):
    """The workflow's nodes and edges do not form a runnable graph."""

    category = "validation"
    severity = "high"

    def __init__(self, message: str, workflow_id: Optional[str] = None, **kwargs):
        super().__init__(message, context={"workflow_id": workflow_id}, **kwargs)


class ConfigurationError(WorkflowEngineError):
    """A node's configuration is missing a field or holds an invalid value."""

    category = "configuration"
    severity = "high"

    def __init__(self, message: str, node_id: Optional[str] = None, config_key: Optional[str] = None, **kwargs):
        super().__init__(message, context={"node_id": node_id, "config_key": config_key}, **kwargs)


class HandlerError(WorkflowEngineError):
    """A node handler's action failed: bad HTTP status, missing record, failed branch..."""

    severity = "high"
    recoverable = True

    def __init__(self, message: str, node_id: Optional[str] = None, node_type: Optional[str] = None, **kwargs):
        super().__init__(message, context={"node_id": node_id, "node_type": node_type}, **kwargs)


class WorkflowTimeoutError(WorkflowEngineError):
    """Base class for node-level and run-level timeouts."""

    category = "timeout"
    severity = "high"

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        if timeout is not None:
            self.details["timeout"] = timeout


class NodeTimeoutError(WorkflowTimeoutError):
    """A single node ran past its own timeout."""

    recoverable = True

    def __init__(self, message: str, node_id: Optional[str] = None, **kwargs):
        super().__init__(message, context={"node_id": node_id}, **kwargs)


class ExecutionTimeoutError(WorkflowTimeoutError):
    """The run as a whole exhausted its execution budget."""

    def __init__(self, message: str = "Execution timeout", execution_id: Optional[str] = None, **kwargs):
        super().__init__(message, context={"execution_id": execution_id}, **kwargs)


class ExecutionCancelledError(WorkflowEngineError):
    """Raised inside a handler once its cancellation token has been set."""

    def __init__(self, message: str = "Execution cancelled", **kwargs):
        super().__init__(message, **kwargs)


class ConditionEvaluationError(WorkflowEngineError):
    """A condition is malformed or cannot be evaluated against the data."""

    category = "validation"
    severity = "low"
    recoverable = True

    def __init__(self, message: str, condition_type: Optional[str] = None, **kwargs):
        super().__init__(message, context={"condition_type": condition_type}, **kwargs)


class RequestValidationError(WorkflowEngineError):
    """An execution request fails basic shape validation."""

    category = "validation"


class WorkflowNotActiveError(WorkflowEngineError):
    """A non-ACTIVE workflow was executed outside test mode."""

    category = "validation"
    severity = "low"

    def __init__(self, message: str, workflow_id: Optional[str] = None, status: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            details={"status": status} if status else None,
            context={"workflow_id": workflow_id},
            **kwargs
        )


class StorageError(WorkflowEngineError):
    """A database read or write failed."""

    category = "storage"
    severity = "high"
    recoverable = True

    def __init__(self, message: str, operation: Optional[str] = None, table: Optional[str] = None, **kwargs):
        super().__init__(message, context={"operation": operation, "table": table}, **kwargs)


class WorkflowNotFoundError(StorageError):
    """No workflow or execution record exists under the requested id."""

    recoverable = False


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Body of the ``detail`` field of an API error response."""
    return error.to_dict()
