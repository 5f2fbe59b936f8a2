"""Host-side orchestration of a workflow execution: load, gate, run, persist, audit."""

import uuid
from typing import Any, Dict, Union

from ..models.core import ExecutionRequest, ExecutionResult
from .engine import WorkflowEngine
from .exceptions import WorkflowNotActiveError
from .execution_history import ExecutionHistory
from .logging import get_logger
from .workflow_manager import WorkflowManager

logger = get_logger(__name__)


class WorkflowService:
    """Runs stored workflows and keeps their history and statistics current."""

    def __init__(
        self,
        engine: WorkflowEngine,
        workflow_manager: WorkflowManager,
        execution_history: ExecutionHistory
    ):
        self.engine = engine
        self.workflow_manager = workflow_manager
        self.execution_history = execution_history

    async def execute(self, workflow_id: str, request: Union[ExecutionRequest, Dict[str, Any], None] = None) -> ExecutionResult:
        """
        Execute a stored workflow.

        Raises:
            RequestValidationError: If a raw request does not validate
            WorkflowNotFoundError: If the workflow does not exist
            WorkflowNotActiveError: If it is not ACTIVE and the request is not a test run
            StorageError: If the execution cannot be recorded
        """
        request = self.engine.coerce_request(request)
        workflow = self.workflow_manager.get_workflow(workflow_id)

        try:
            self.engine.check_can_execute(workflow, request)
        except WorkflowNotActiveError as e:
            self.execution_history.audit_logger.log_rejected_execution(workflow_id, e.message)
            raise

        execution_id = str(uuid.uuid4())
        self.execution_history.start_execution(execution_id, workflow_id, request)
        logger.info(f"Executing workflow {workflow_id} as {execution_id} (test_mode={request.test_mode})")

        try:
            result = await self.engine.execute(workflow, request, execution_id=execution_id)
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            logger.error(f"Execution {execution_id} of workflow {workflow_id} aborted: {message}")
            self.execution_history.fail_execution(execution_id, request, message)
            raise

        self.execution_history.finish_execution(result, request)
        self.workflow_manager.record_execution(workflow_id, result)
        return result
