"""Workflow engine facade: status gate, context setup and scheduler wiring."""

import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError

from ..config import AppConfig, get_config
from ..models.core import (
    ExecutionRequest,
    ExecutionResult,
    ExecutionStatusEnum,
    WorkflowDefinition,
    WorkflowStatus,
)
from .aggregator import ResultAggregator
from .conditions import ConditionEvaluator
from .context import CancellationToken, ExecutionContext
from .exceptions import GraphError, RequestValidationError, WorkflowNotActiveError
from .graph_builder import build_execution_graph
from .handlers import HandlerRegistry, default_registry
from .logging import bind_execution, get_logger, unbind_execution
from .node_executor import NodeExecutor
from .scheduler import ExecutionScheduler
from .services import HandlerServices, HttpxClient


logger = get_logger(__name__)


class WorkflowEngine:
    """
    Executes workflow definitions.

    ``execute`` rejects non-active workflows outside test mode with
    WorkflowNotActiveError. Once a run starts the caller always receives an
    ExecutionResult, including when the graph cannot be built.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        registry: Optional[HandlerRegistry] = None,
        services: Optional[HandlerServices] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config or get_config()
        self.registry = registry or default_registry()
        self.services = services or HandlerServices(
            http=HttpxClient(timeout=self.config.http_timeout),
            ai_default_model=self.config.ai_default_model
        )
        self.clock = clock
        self.evaluator = ConditionEvaluator(self.config.condition_failure_policy)
        self.executor = NodeExecutor(
            registry=self.registry,
            config=self.config,
            clock=clock,
            sleep=self.services.sleep
        )
        self.scheduler = ExecutionScheduler(self.executor, self.evaluator, clock=clock)

    def check_can_execute(self, workflow: WorkflowDefinition, request: ExecutionRequest):
        """
        Raises:
            WorkflowNotActiveError: If the workflow is not ACTIVE and the request is not a test run
        """
        if workflow.status != WorkflowStatus.ACTIVE and not request.test_mode:
            raise WorkflowNotActiveError(
                f"Workflow {workflow.id} is {workflow.status.value}; only ACTIVE workflows can be executed outside test mode",
                workflow_id=workflow.id,
                status=workflow.status.value
            )

    def coerce_request(self, request: Union[ExecutionRequest, Dict[str, Any], None]) -> ExecutionRequest:
        if request is None:
            return ExecutionRequest()
        if isinstance(request, ExecutionRequest):
            return request
        try:
            return ExecutionRequest.model_validate(request)
        except ValidationError as e:
            raise RequestValidationError(
                f"Invalid execution request: {e.errors()[0]['msg']}",
                details={"fields": [".".join(str(part) for part in error["loc"]) for error in e.errors()]}
            ) from e

    def run_budget(self, request: ExecutionRequest) -> float:
        """Run budget in seconds for a request."""
        if request.timeout is not None:
            return request.timeout / 1000.0
        return self.config.execution_timeout

    async def execute(
        self,
        workflow: WorkflowDefinition,
        request: Union[ExecutionRequest, Dict[str, Any], None] = None,
        execution_id: Optional[str] = None
    ) -> ExecutionResult:
        """
        Execute a workflow end to end.

        Args:
            workflow: Workflow definition to execute
            request: Trigger data, context and run options, as a model or its JSON form
            execution_id: Identifier to use for the run (generated if omitted)

        Returns:
            The finalized ExecutionResult

        Raises:
            RequestValidationError: If a raw request does not validate
            WorkflowNotActiveError: Before the run starts, see check_can_execute
        """
        request = self.coerce_request(request)
        self.check_can_execute(workflow, request)
        execution_id = execution_id or str(uuid.uuid4())

        bind_execution(workflow_id=workflow.id, execution_id=execution_id)
        try:
            aggregator = ResultAggregator(execution_id, workflow.id, debug_mode=request.debug_mode)
            strict = workflow.settings.strict_edges
            try:
                graph = build_execution_graph(
                    workflow.nodes,
                    workflow.edges,
                    strict_edges=self.config.strict_edges if strict is None else strict,
                    workflow_id=workflow.id
                )
            except GraphError as e:
                logger.error(f"Cannot execute workflow {workflow.id}: {e.message}")
                aggregator.add_error(e.message)
                return aggregator.finalize(ExecutionStatusEnum.FAILED, 0.0)

            if graph.dangling_edges:
                logger.info(f"Dropped {len(graph.dangling_edges)} edge(s) referencing unknown nodes")

            context = ExecutionContext(
                execution_id=execution_id,
                workflow_id=workflow.id,
                trigger_data=request.trigger_data,
                context=request.context,
                test_mode=request.test_mode,
                debug_mode=request.debug_mode,
                services=self.services,
                cancellation=CancellationToken(),
                evaluator=self.evaluator,
                executor=self.executor,
                max_loop_iterations=self.config.max_loop_iterations,
                warn=aggregator.add_warning,
                start_time=datetime.utcnow()
            )
            return await self.scheduler.run(
                graph,
                context,
                aggregator,
                budget=self.run_budget(request),
                policy=workflow.settings.condition_failure_policy
            )
        finally:
            unbind_execution()
