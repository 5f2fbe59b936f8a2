"""Persistence of execution records and the activity audit trail."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import ExecutionRecord, ExecutionRequest, ExecutionResult, ExecutionStatusEnum
from ..storage.database import SessionFactory, session_scope
from ..storage.models import ActivityLogModel, WorkflowExecutionModel
from .exceptions import StorageError, WorkflowNotFoundError
from .logging import ExecutionAuditLogger, get_logger

logger = get_logger(__name__)


def _to_record(model: WorkflowExecutionModel) -> ExecutionRecord:
    return ExecutionRecord(
        execution_id=model.id,
        workflow_id=model.workflow_id,
        status=ExecutionStatusEnum(model.status),
        test_mode=bool(model.test_mode),
        started_at=model.started_at,
        completed_at=model.completed_at,
        error_message=model.error_message,
        result=ExecutionResult.model_validate(model.result) if model.result else None
    )


def activity_action(request: ExecutionRequest) -> str:
    """Audit action name for an execution request."""
    if request.debug_mode:
        return "WORKFLOW_DEBUG_EXECUTED"
    if request.test_mode:
        return "WORKFLOW_TEST_EXECUTED"
    return "WORKFLOW_EXECUTED"


class ExecutionHistory:
    """Records executions from start to finish and writes their audit entries."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        self.session_factory = session_factory
        self.audit_logger = ExecutionAuditLogger()

    def start_execution(self, execution_id: str, workflow_id: str, request: ExecutionRequest) -> ExecutionRecord:
        """
        Create the RUNNING record for a new execution.

        Raises:
            StorageError: If the record cannot be stored
        """
        try:
            with session_scope(self.session_factory) as db:
                model = WorkflowExecutionModel(
                    id=execution_id,
                    workflow_id=workflow_id,
                    status=ExecutionStatusEnum.RUNNING.value,
                    test_mode=request.test_mode,
                    trigger_data=request.trigger_data,
                    started_at=datetime.utcnow()
                )
                db.add(model)
                db.flush()
                record = _to_record(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error while creating execution record: {str(e)}")
            raise StorageError(
                f"Failed to create execution record: {str(e)}",
                operation="create",
                table="workflow_executions"
            )

        logger.debug(f"Created execution record {execution_id} for workflow {workflow_id}")
        return record

    def finish_execution(self, result: ExecutionResult, request: ExecutionRequest) -> ExecutionRecord:
        """
        Store the finalized result and write the audit entry.

        Raises:
            WorkflowNotFoundError: If the execution was never started
            StorageError: If storage fails
        """
        summary = result.audit_summary()
        try:
            with session_scope(self.session_factory) as db:
                model = db.query(WorkflowExecutionModel).filter(WorkflowExecutionModel.id == result.execution_id).first()
                if not model:
                    raise WorkflowNotFoundError(
                        f"Execution '{result.execution_id}' not found",
                        table="workflow_executions"
                    )
                model.status = result.status.value
                model.result = result.model_dump(mode="json", by_alias=True)
                model.error_message = "; ".join(result.errors) or None
                model.execution_time = result.execution_time
                model.nodes_executed = result.nodes_executed
                model.completed_at = datetime.utcnow()

                db.add(ActivityLogModel(
                    workflow_id=model.workflow_id,
                    execution_id=result.execution_id,
                    action=activity_action(request),
                    details={
                        **summary,
                        "conditionalPaths": result.conditional_paths.model_dump(by_alias=True),
                        "performance": result.performance.model_dump(by_alias=True),
                        "errorHandling": result.error_handling.model_dump(by_alias=True),
                    }
                ))
                db.flush()
                record = _to_record(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error while finalizing execution: {str(e)}")
            raise StorageError(
                f"Failed to finalize execution: {str(e)}",
                operation="update",
                table="workflow_executions"
            )

        self.audit_logger.log_execution_summary(
            workflow_id=record.workflow_id,
            execution_id=result.execution_id,
            status=result.status.value,
            execution_time=result.execution_time,
            nodes_executed=result.nodes_executed,
            error_count=summary["errorCount"],
            warning_count=summary["warningCount"]
        )
        return record

    def fail_execution(self, execution_id: str, request: ExecutionRequest, message: str) -> ExecutionRecord:
        """
        Close a RUNNING record as FAILED when the run ended without producing a result.

        Raises:
            WorkflowNotFoundError: If the execution was never started
            StorageError: If storage fails
        """
        try:
            with session_scope(self.session_factory) as db:
                model = db.query(WorkflowExecutionModel).filter(WorkflowExecutionModel.id == execution_id).first()
                if not model:
                    raise WorkflowNotFoundError(f"Execution '{execution_id}' not found", table="workflow_executions")
                model.status = ExecutionStatusEnum.FAILED.value
                model.error_message = message
                model.completed_at = datetime.utcnow()
                db.add(ActivityLogModel(
                    workflow_id=model.workflow_id,
                    execution_id=execution_id,
                    action=activity_action(request),
                    details={"status": ExecutionStatusEnum.FAILED.value, "errorCount": 1, "errors": [message]}
                ))
                db.flush()
                record = _to_record(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error while failing execution: {str(e)}")
            raise StorageError(
                f"Failed to finalize execution: {str(e)}",
                operation="update",
                table="workflow_executions"
            )

        self.audit_logger.log_execution_summary(
            workflow_id=record.workflow_id,
            execution_id=execution_id,
            status=ExecutionStatusEnum.FAILED.value,
            execution_time=0.0,
            nodes_executed=0,
            error_count=1,
            warning_count=0
        )
        return record

    def get_execution(self, execution_id: str) -> ExecutionRecord:
        """
        Raises:
            WorkflowNotFoundError: If no execution has this ID
        """
        try:
            with session_scope(self.session_factory) as db:
                model = db.query(WorkflowExecutionModel).filter(WorkflowExecutionModel.id == execution_id).first()
                if not model:
                    raise WorkflowNotFoundError(f"Execution '{execution_id}' not found", table="workflow_executions")
                return _to_record(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error while retrieving execution: {str(e)}")
            raise StorageError(f"Failed to retrieve execution: {str(e)}", operation="get", table="workflow_executions")

    def list_executions(self, workflow_id: str, limit: int = 50) -> List[ExecutionRecord]:
        """Most recent executions of a workflow first."""
        try:
            with session_scope(self.session_factory) as db:
                models = (
                    db.query(WorkflowExecutionModel)
                    .filter(WorkflowExecutionModel.workflow_id == workflow_id)
                    .order_by(WorkflowExecutionModel.started_at.desc())
                    .limit(limit)
                    .all()
                )
                return [_to_record(model) for model in models]
        except SQLAlchemyError as e:
            logger.error(f"Database error while listing executions: {str(e)}")
            raise StorageError(f"Failed to list executions: {str(e)}", operation="list", table="workflow_executions")

    def get_activity(self, workflow_id: str) -> List[Dict[str, Any]]:
        """Audit entries for a workflow, oldest first."""
        try:
            with session_scope(self.session_factory) as db:
                entries = (
                    db.query(ActivityLogModel)
                    .filter(ActivityLogModel.workflow_id == workflow_id)
                    .order_by(ActivityLogModel.id)
                    .all()
                )
                return [
                    {
                        "action": entry.action,
                        "executionId": entry.execution_id,
                        "details": entry.details,
                        "createdAt": entry.created_at,
                    }
                    for entry in entries
                ]
        except SQLAlchemyError as e:
            logger.error(f"Database error while reading activity log: {str(e)}")
            raise StorageError(f"Failed to read activity log: {str(e)}", operation="list", table="activity_logs")
