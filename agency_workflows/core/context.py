"""Runtime state shared by the nodes of one execution."""

import asyncio
import re
import copy
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from .exceptions import ExecutionCancelledError
from .expressions import resolve_field

if TYPE_CHECKING:
    from .services import HandlerServices
    from .conditions import ConditionEvaluator


class CancellationToken:
    """
    Cooperative cancellation signal passed to every handler.

    A run owns one token; each node dispatch gets a child. Cancelling a token
    cancels all of its children, so a run timeout stops nested work too.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self.parent = parent
        self.reason: Optional[str] = None
        self._event = asyncio.Event()
        self._children: List["CancellationToken"] = []
        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None):
        """Set the token and all of its children."""
        if self._event.is_set():
            return
        self.reason = reason or "Execution cancelled"
        self._event.set()
        for child in self._children:
            child.cancel(self.reason)

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def release(self):
        """Detach from the parent once the owning dispatch has finished."""
        if self.parent is not None and self in self.parent._children:
            self.parent._children.remove(self)

    def raise_if_cancelled(self):
        if self.cancelled:
            raise ExecutionCancelledError(self.reason)

    async def sleep(self, seconds: float):
        """Wait for the given time, returning early with an error if cancelled."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise ExecutionCancelledError(self.reason)


_PLACEHOLDER = re.compile(r"\{\{?\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\}?\}")


class ExecutionContext:
    """Variables, collaborators and cancellation state for one execution."""

    def __init__(
        self,
        execution_id: str,
        workflow_id: Optional[str],
        trigger_data: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
        test_mode: bool = False,
        debug_mode: bool = False,
        services: Optional["HandlerServices"] = None,
        cancellation: Optional[CancellationToken] = None,
        evaluator: Optional["ConditionEvaluator"] = None,
        executor: Any = None,
        max_loop_iterations: int = 100,
        warn: Optional[Callable[[str], None]] = None,
        start_time: Optional[datetime] = None,
        variables: Optional[Dict[str, Any]] = None
    ):
        self.execution_id = execution_id
        self.workflow_id = workflow_id
        self.trigger_data = dict(trigger_data or {})
        self.test_mode = test_mode
        self.debug_mode = debug_mode
        self.services = services
        self.cancellation = cancellation or CancellationToken()
        self.evaluator = evaluator
        self.executor = executor
        self.max_loop_iterations = max_loop_iterations
        self._warn = warn
        self.start_time = start_time or datetime.utcnow()

        if variables is None:
            variables = {
                **self.trigger_data,
                **(context or {}),
                "triggerData": self.trigger_data,
                "executionId": execution_id,
                "workflowId": workflow_id,
                "testMode": test_mode,
                "startTime": self.start_time.isoformat(),
            }
        self.variables = variables

    def get(self, path: str, default: Any = None) -> Any:
        """Read a dotted path from the variables."""
        value = resolve_field(self.variables, path)
        return default if value is None else value

    def set(self, name: str, value: Any):
        self.variables[name] = value

    def warn(self, message: str):
        """Report a warning to the run's result."""
        if self._warn is not None:
            self._warn(message)

    def render(self, template: Any, extra: Optional[Dict[str, Any]] = None) -> Any:
        """
        Replace ``{name}`` and ``{{name}}`` placeholders with variable values.

        Unknown placeholders are left as they are. Non-string templates are
        returned unchanged.
        """
        if not isinstance(template, str):
            return template
        scope = {**self.variables, **(extra or {})}

        def replace(match):
            value = resolve_field(scope, match.group(1))
            return match.group(0) if value is None else str(value)

        return _PLACEHOLDER.sub(replace, template)

    def derive(self, extra_variables: Optional[Dict[str, Any]] = None) -> "ExecutionContext":
        """Copy of this context with isolated variables, for loop bodies and parallel branches."""
        variables = copy.deepcopy(self.variables)
        variables.update(extra_variables or {})
        return ExecutionContext(
            execution_id=self.execution_id,
            workflow_id=self.workflow_id,
            trigger_data=self.trigger_data,
            test_mode=self.test_mode,
            debug_mode=self.debug_mode,
            services=self.services,
            cancellation=self.cancellation,
            evaluator=self.evaluator,
            executor=self.executor,
            max_loop_iterations=self.max_loop_iterations,
            warn=self._warn,
            start_time=self.start_time,
            variables=variables
        )
