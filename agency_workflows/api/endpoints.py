"""FastAPI REST endpoints for workflows and their executions."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core.exceptions import (
    ConfigurationError,
    GraphError,
    RequestValidationError,
    StorageError,
    WorkflowEngineError,
    WorkflowNotActiveError,
    WorkflowNotFoundError,
    create_error_response,
)
from ..core.execution_history import ExecutionHistory
from ..core.handlers import HandlerRegistry
from ..core.logging import get_logger
from ..core.workflow_manager import WorkflowManager
from ..core.workflow_service import WorkflowService
from ..models.core import (
    ExecutionRecord,
    ExecutionRequest,
    ExecutionResult,
    WorkflowDefinition,
    WorkflowStatus,
    WorkflowSummary,
)

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["workflows"])

# Global instances (initialized in main.py)
_workflow_manager: Optional[WorkflowManager] = None
_execution_history: Optional[ExecutionHistory] = None
_workflow_service: Optional[WorkflowService] = None
_handler_registry: Optional[HandlerRegistry] = None


def init_dependencies(
    workflow_manager: WorkflowManager,
    execution_history: ExecutionHistory,
    workflow_service: WorkflowService,
    handler_registry: HandlerRegistry
):
    """Initialize the global dependencies."""
    global _workflow_manager, _execution_history, _workflow_service, _handler_registry
    _workflow_manager = workflow_manager
    _execution_history = execution_history
    _workflow_service = workflow_service
    _handler_registry = handler_registry


def _not_initialized(name: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"{name} not initialized"
    )


def get_workflow_manager() -> WorkflowManager:
    """Dependency to get the workflow manager."""
    if _workflow_manager is None:
        raise _not_initialized("Workflow manager")
    return _workflow_manager


def get_execution_history() -> ExecutionHistory:
    """Dependency to get the execution history."""
    if _execution_history is None:
        raise _not_initialized("Execution history")
    return _execution_history


def get_workflow_service() -> WorkflowService:
    """Dependency to get the workflow service."""
    if _workflow_service is None:
        raise _not_initialized("Workflow service")
    return _workflow_service


def get_handler_registry() -> HandlerRegistry:
    """Dependency to get the handler registry."""
    if _handler_registry is None:
        raise _not_initialized("Handler registry")
    return _handler_registry


# Request/Response models
class UpdateStatusRequest(BaseModel):
    """Request model for changing a workflow's status."""
    status: WorkflowStatus = Field(..., description="New lifecycle status")


class MessageResponse(BaseModel):
    """Plain acknowledgement."""
    message: str = Field(..., description="Result message")


def _error_status(error: WorkflowEngineError) -> int:
    """HTTP status code for an engine error."""
    if isinstance(error, WorkflowNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, WorkflowNotActiveError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, (GraphError, ConfigurationError, RequestValidationError)):
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _http_error(error: WorkflowEngineError, action: str) -> HTTPException:
    code = _error_status(error)
    if code >= 500:
        logger.error(f"Error while {action}: {error.message}")
    else:
        logger.warning(f"Rejected while {action}: {error.message}")
    return HTTPException(status_code=code, detail=create_error_response(error))


def _internal_error(error: Exception, action: str) -> HTTPException:
    logger.error(f"Unexpected error while {action}: {str(error)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": f"An unexpected error occurred while {action}",
            "details": {"original_error": str(error)},
            "timestamp": datetime.utcnow().isoformat()
        }
    )


# Endpoints

@router.post(
    "/workflows",
    response_model=WorkflowDefinition,
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow"
)
async def create_workflow(
    workflow: WorkflowDefinition,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> WorkflowDefinition:
    """Store a new workflow definition."""
    try:
        return workflow_manager.create_workflow(workflow)
    except StorageError as e:
        if "already exists" in e.message:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=create_error_response(e))
        raise _http_error(e, "creating workflow")
    except WorkflowEngineError as e:
        raise _http_error(e, "creating workflow")
    except Exception as e:
        raise _internal_error(e, "creating workflow")


@router.get(
    "/workflows",
    response_model=List[WorkflowSummary],
    summary="List workflows"
)
async def list_workflows(
    workflow_status: Optional[WorkflowStatus] = Query(None, alias="status"),
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> List[WorkflowSummary]:
    """List workflows, newest first."""
    try:
        return workflow_manager.list_workflows(workflow_status)
    except WorkflowEngineError as e:
        raise _http_error(e, "listing workflows")
    except Exception as e:
        raise _internal_error(e, "listing workflows")


@router.get(
    "/workflows/{workflow_id}",
    response_model=WorkflowDefinition,
    summary="Get a workflow"
)
async def get_workflow(
    workflow_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> WorkflowDefinition:
    """Retrieve a workflow definition with its statistics."""
    try:
        return workflow_manager.get_workflow(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e, "retrieving workflow")
    except Exception as e:
        raise _internal_error(e, "retrieving workflow")


@router.delete(
    "/workflows/{workflow_id}",
    response_model=MessageResponse,
    summary="Delete a workflow"
)
async def delete_workflow(
    workflow_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> MessageResponse:
    """Delete a workflow and its execution history."""
    try:
        deleted = workflow_manager.delete_workflow(workflow_id)
    except WorkflowEngineError as e:
        raise _http_error(e, "deleting workflow")
    except Exception as e:
        raise _internal_error(e, "deleting workflow")

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "WorkflowNotFoundError",
                "message": f"Workflow with ID '{workflow_id}' not found",
                "details": {"workflow_id": workflow_id}
            }
        )
    return MessageResponse(message=f"Workflow '{workflow_id}' deleted successfully")


@router.patch(
    "/workflows/{workflow_id}/status",
    response_model=WorkflowDefinition,
    summary="Change a workflow's status"
)
async def update_workflow_status(
    workflow_id: str,
    request: UpdateStatusRequest,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> WorkflowDefinition:
    """Activate, pause, archive or return a workflow to draft."""
    try:
        return workflow_manager.update_status(workflow_id, request.status)
    except WorkflowEngineError as e:
        raise _http_error(e, "updating workflow status")
    except Exception as e:
        raise _internal_error(e, "updating workflow status")


@router.post(
    "/workflows/{workflow_id}/execute",
    response_model=ExecutionResult,
    summary="Execute a workflow",
    description="Run a workflow to completion and return its structured result"
)
async def execute_workflow(
    workflow_id: str,
    request: Optional[ExecutionRequest] = None,
    workflow_service: WorkflowService = Depends(get_workflow_service)
) -> ExecutionResult:
    """
    Execute a workflow.

    Non-active workflows can only be run with ``testMode``.
    """
    try:
        return await workflow_service.execute(workflow_id, request or ExecutionRequest())
    except WorkflowEngineError as e:
        raise _http_error(e, "executing workflow")
    except Exception as e:
        raise _internal_error(e, "executing workflow")


@router.get(
    "/workflows/{workflow_id}/executions",
    response_model=List[ExecutionRecord],
    summary="List a workflow's executions"
)
async def list_executions(
    workflow_id: str,
    limit: int = Query(50, ge=1, le=500),
    execution_history: ExecutionHistory = Depends(get_execution_history)
) -> List[ExecutionRecord]:
    """Most recent executions of a workflow first."""
    try:
        return execution_history.list_executions(workflow_id, limit=limit)
    except WorkflowEngineError as e:
        raise _http_error(e, "listing executions")
    except Exception as e:
        raise _internal_error(e, "listing executions")


@router.get(
    "/executions/{execution_id}",
    response_model=ExecutionRecord,
    summary="Get an execution"
)
async def get_execution(
    execution_id: str,
    execution_history: ExecutionHistory = Depends(get_execution_history)
) -> ExecutionRecord:
    """Retrieve one execution with its result."""
    try:
        return execution_history.get_execution(execution_id)
    except WorkflowEngineError as e:
        raise _http_error(e, "retrieving execution")
    except Exception as e:
        raise _internal_error(e, "retrieving execution")


@router.get(
    "/node-types",
    response_model=List[Dict[str, Any]],
    summary="List node types"
)
async def list_node_types(
    handler_registry: HandlerRegistry = Depends(get_handler_registry)
) -> List[Dict[str, Any]]:
    """Node types the engine can execute, with their required config fields."""
    return handler_registry.describe()
