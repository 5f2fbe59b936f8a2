"""Workflow definition storage and per-workflow run statistics."""

from datetime import datetime
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import ExecutionResult, WorkflowDefinition, WorkflowStatus, WorkflowSummary
from ..storage.database import SessionFactory, session_scope
from ..storage.models import WorkflowModel
from .exceptions import StorageError, WorkflowNotFoundError
from .graph_builder import build_execution_graph
from .logging import get_logger

logger = get_logger(__name__)


def calculate_new_average(current_average: float, new_value: float, count: int) -> float:
    """Running average after adding the count-th value."""
    return ((current_average * (count - 1)) + new_value) / count


def calculate_new_success_rate(current_rate: float, is_success: bool, count: int) -> float:
    """Running success rate after the count-th execution."""
    success_count = (current_rate * (count - 1)) + (1 if is_success else 0)
    return success_count / count


def _to_definition(model: WorkflowModel) -> WorkflowDefinition:
    definition = dict(model.definition or {})
    return WorkflowDefinition(
        id=model.id,
        name=model.name,
        description=model.description,
        status=WorkflowStatus(model.status),
        nodes=definition.get("nodes", []),
        edges=definition.get("edges", []),
        settings=definition.get("settings") or {},
        execution_count=model.execution_count or 0,
        last_executed_at=model.last_executed_at,
        average_execution_time=model.average_execution_time or 0.0,
        success_rate=model.success_rate or 0.0
    )


class WorkflowManager:
    """Manages workflow definitions and their execution statistics."""

    def __init__(self, session_factory: Optional[SessionFactory] = None):
        """Initialize WorkflowManager with an optional session factory."""
        self.session_factory = session_factory

    def create_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """
        Store a new workflow definition.

        Args:
            workflow: The workflow definition to create

        Returns:
            WorkflowDefinition: The stored definition

        Raises:
            GraphError: If an ACTIVE workflow has no valid execution graph
            StorageError: If a workflow with the same ID exists or storage fails
        """
        logger.info(f"Creating new workflow: {workflow.name}")
        if workflow.status == WorkflowStatus.ACTIVE:
            self._validate_runnable(workflow)

        try:
            with session_scope(self.session_factory) as db:
                if db.query(WorkflowModel).filter(WorkflowModel.id == workflow.id).first():
                    raise StorageError(
                        f"Workflow with ID '{workflow.id}' already exists",
                        operation="create",
                        table="workflows"
                    )
                db.add(WorkflowModel(
                    id=workflow.id,
                    name=workflow.name,
                    description=workflow.description,
                    status=workflow.status.value,
                    definition=workflow.model_dump(mode="json", by_alias=True, include={"nodes", "edges", "settings"}),
                    created_at=datetime.utcnow()
                ))
        except SQLAlchemyError as e:
            logger.error(f"Database error while creating workflow: {str(e)}")
            raise StorageError(f"Failed to store workflow: {str(e)}", operation="create", table="workflows")

        logger.info(f"Successfully created workflow '{workflow.name}' with ID: {workflow.id}")
        return self.get_workflow(workflow.id)

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """
        Retrieve a workflow definition by its ID.

        Raises:
            WorkflowNotFoundError: If no workflow has this ID
            StorageError: If storage operation fails
        """
        logger.debug(f"Retrieving workflow with ID: {workflow_id}")
        try:
            with session_scope(self.session_factory) as db:
                model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
                if not model:
                    raise WorkflowNotFoundError(f"Workflow with ID '{workflow_id}' not found", table="workflows")
                return _to_definition(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error while retrieving workflow: {str(e)}")
            raise StorageError(f"Failed to retrieve workflow: {str(e)}", operation="get", table="workflows")

    def list_workflows(self, status: Optional[WorkflowStatus] = None) -> List[WorkflowSummary]:
        """List workflows, newest first, optionally filtered by status."""
        logger.debug("Listing workflows")
        try:
            with session_scope(self.session_factory) as db:
                query = db.query(WorkflowModel)
                if status is not None:
                    query = query.filter(WorkflowModel.status == status.value)
                return [
                    WorkflowSummary(
                        id=model.id,
                        name=model.name,
                        status=WorkflowStatus(model.status),
                        node_count=len((model.definition or {}).get("nodes", [])),
                        execution_count=model.execution_count or 0,
                        last_executed_at=model.last_executed_at,
                        created_at=model.created_at
                    )
                    for model in query.order_by(WorkflowModel.created_at.desc()).all()
                ]
        except SQLAlchemyError as e:
            logger.error(f"Database error while listing workflows: {str(e)}")
            raise StorageError(f"Failed to list workflows: {str(e)}", operation="list", table="workflows")

    def update_status(self, workflow_id: str, status: WorkflowStatus) -> WorkflowDefinition:
        """
        Change a workflow's lifecycle status.

        Activating a workflow checks that its graph can be executed.

        Raises:
            GraphError: If the workflow is activated without a valid execution graph
            WorkflowNotFoundError: If no workflow has this ID
        """
        if status == WorkflowStatus.ACTIVE:
            self._validate_runnable(self.get_workflow(workflow_id))

        try:
            with session_scope(self.session_factory) as db:
                model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
                if not model:
                    raise WorkflowNotFoundError(f"Workflow with ID '{workflow_id}' not found", table="workflows")
                model.status = status.value
        except SQLAlchemyError as e:
            logger.error(f"Database error while updating workflow status: {str(e)}")
            raise StorageError(f"Failed to update workflow: {str(e)}", operation="update", table="workflows")

        logger.info(f"Workflow {workflow_id} is now {status.value}")
        return self.get_workflow(workflow_id)

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow and its executions; returns False if it does not exist."""
        logger.info(f"Deleting workflow with ID: {workflow_id}")
        try:
            with session_scope(self.session_factory) as db:
                model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
                if not model:
                    logger.warning(f"Workflow with ID '{workflow_id}' not found for deletion")
                    return False
                db.delete(model)
        except SQLAlchemyError as e:
            logger.error(f"Database error while deleting workflow: {str(e)}")
            raise StorageError(f"Failed to delete workflow: {str(e)}", operation="delete", table="workflows")

        logger.info(f"Successfully deleted workflow with ID: {workflow_id}")
        return True

    def record_execution(self, workflow_id: str, result: ExecutionResult) -> WorkflowDefinition:
        """Bump the execution counters and running averages after a run."""
        try:
            with session_scope(self.session_factory) as db:
                model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
                if not model:
                    raise WorkflowNotFoundError(f"Workflow with ID '{workflow_id}' not found", table="workflows")
                count = (model.execution_count or 0) + 1
                model.average_execution_time = calculate_new_average(
                    model.average_execution_time or 0.0, result.execution_time, count
                )
                model.success_rate = calculate_new_success_rate(model.success_rate or 0.0, result.success, count)
                model.execution_count = count
                model.last_executed_at = datetime.utcnow()
        except SQLAlchemyError as e:
            logger.error(f"Database error while recording execution: {str(e)}")
            raise StorageError(f"Failed to record execution: {str(e)}", operation="update", table="workflows")

        return self.get_workflow(workflow_id)

    def _validate_runnable(self, workflow: WorkflowDefinition):
        strict = bool(workflow.settings.strict_edges)
        build_execution_graph(workflow.nodes, workflow.edges, strict_edges=strict, workflow_id=workflow.id)
