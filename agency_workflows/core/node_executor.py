"""Node dispatch with timeouts, cancellation and retries."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..config import AppConfig
from ..models.core import NodeDefinition, NodeResult
from .context import CancellationToken, ExecutionContext
from .exceptions import (
    ConfigurationError,
    ExecutionTimeoutError,
    HandlerError,
    NodeTimeoutError,
    WorkflowEngineError,
)
from .handlers import HandlerRegistry, default_registry
from .logging import get_logger


logger = get_logger(__name__)


class RetryConfig:
    """Per-node retry behaviour read from the node's ``retryConfig``."""

    def __init__(
        self,
        enabled: bool = False,
        max_retries: int = 3,
        retry_delay: float = 1000.0,
        backoff_multiplier: float = 2.0
    ):
        self.enabled = enabled
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.backoff_multiplier = backoff_multiplier

    @classmethod
    def from_config(cls, node: NodeDefinition) -> "RetryConfig":
        raw = node.config.get("retryConfig")
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise ConfigurationError(
                f"Node '{node.id}' retryConfig must be an object",
                node_id=node.id,
                config_key="retryConfig"
            )
        try:
            config = cls(
                enabled=bool(raw.get("enabled", False)),
                max_retries=int(raw.get("maxRetries", 3)),
                retry_delay=float(raw.get("retryDelay", 1000)),
                backoff_multiplier=float(raw.get("backoffMultiplier", 2))
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Node '{node.id}' has an invalid retryConfig: {e}",
                node_id=node.id,
                config_key="retryConfig"
            ) from e
        if config.max_retries < 0 or config.retry_delay < 0:
            raise ConfigurationError(
                f"Node '{node.id}' retryConfig values must not be negative",
                node_id=node.id,
                config_key="retryConfig"
            )
        return config

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """Whether a failed attempt (1-based) should be followed by another."""
        if not self.enabled or attempt > self.max_retries:
            return False
        return isinstance(exception, (HandlerError, NodeTimeoutError))

    def get_delay(self, attempt: int) -> float:
        """Delay in seconds after the given failed attempt."""
        return self.retry_delay * (self.backoff_multiplier ** (attempt - 1)) / 1000.0


@dataclass
class NodeOutcome:
    """Result of executing one node, successful or not."""
    node: NodeDefinition
    result: Optional[Dict[str, Any]] = None
    error: Optional[WorkflowEngineError] = None
    execution_time: float = 0.0
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def retries(self) -> int:
        return self.attempts - 1

    def to_node_result(self) -> NodeResult:
        return NodeResult(
            node_id=self.node.id,
            node_type=self.node.type,
            result=self.result,
            error=self.error.message if self.error else None,
            execution_time=self.execution_time,
            attempts=self.attempts
        )


class NodeExecutor:
    """
    Executes nodes through their registered handlers.

    Each attempt runs as a task bounded by the node timeout (``config.timeout``
    in ms, else the engine default) and by the remaining run budget. When the
    bound expires the task is cancelled and the node's cancellation token set.
    """

    def __init__(
        self,
        registry: Optional[HandlerRegistry] = None,
        config: Optional[AppConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        self.registry = registry or default_registry()
        self.config = config or AppConfig()
        self.clock = clock
        self.sleep = sleep

    def validate(self, node: NodeDefinition):
        """Check that a handler exists for the node and its config is complete."""
        self.registry.get(node.type).validate(node)
        RetryConfig.from_config(node)
        self._node_timeout(node)

    async def dispatch(self, node: NodeDefinition, context: ExecutionContext, token: CancellationToken) -> Dict[str, Any]:
        """Validate and run a node once, without timeout or retries. Used for nested nodes."""
        handler = self.registry.get(node.type)
        handler.validate(node)
        token.raise_if_cancelled()
        try:
            return await handler.execute(node, context, token)
        except WorkflowEngineError:
            raise
        except Exception as e:
            raise HandlerError(str(e) or e.__class__.__name__, node_id=node.id, node_type=node.type) from e

    def _node_timeout(self, node: NodeDefinition) -> float:
        timeout = node.config.get("timeout")
        if timeout is None:
            return self.config.node_timeout
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigurationError(
                f"Node '{node.id}' timeout must be a positive number of milliseconds",
                node_id=node.id,
                config_key="timeout"
            )
        return timeout / 1000.0

    async def _attempt(
        self,
        node: NodeDefinition,
        context: ExecutionContext,
        deadline: Optional[float]
    ) -> Dict[str, Any]:
        node_timeout = self._node_timeout(node)
        bound = node_timeout
        run_budget_binds = False
        if deadline is not None:
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise ExecutionTimeoutError(execution_id=context.execution_id)
            if remaining < node_timeout:
                bound = remaining
                run_budget_binds = True

        token = context.cancellation.child()
        try:
            return await asyncio.wait_for(self.dispatch(node, context, token), timeout=bound)
        except asyncio.TimeoutError:
            token.cancel(f"Node {node.id} timed out")
            if run_budget_binds:
                raise ExecutionTimeoutError(execution_id=context.execution_id)
            raise NodeTimeoutError(
                f"Node {node.id} timed out after {int(node_timeout * 1000)}ms",
                node_id=node.id,
                timeout=node_timeout
            )
        finally:
            token.release()

    async def execute(
        self,
        node: NodeDefinition,
        context: ExecutionContext,
        deadline: Optional[float] = None
    ) -> NodeOutcome:
        """
        Execute a node with timeout and retry handling.

        Failures are returned on the outcome rather than raised.

        Args:
            node: Node to execute
            context: Shared execution context
            deadline: Clock value at which the run budget expires

        Returns:
            NodeOutcome with either a result or an error
        """
        start = time.perf_counter()
        attempt = 0

        try:
            self.validate(node)
        except ConfigurationError as e:
            logger.warning(f"Node {node.id} rejected before dispatch: {e.message}")
            return NodeOutcome(node=node, error=e, execution_time=_elapsed_ms(start))

        retry = RetryConfig.from_config(node)
        while True:
            attempt += 1
            try:
                result = await self._attempt(node, context, deadline)
                logger.debug(f"Node {node.id} ({node.type}) completed on attempt {attempt}")
                return NodeOutcome(node=node, result=result, execution_time=_elapsed_ms(start), attempts=attempt)
            except WorkflowEngineError as e:
                if not retry.should_retry(e, attempt) or context.cancellation.cancelled:
                    logger.warning(f"Node {node.id} ({node.type}) failed after {attempt} attempt(s): {e.message}")
                    return NodeOutcome(node=node, error=e, execution_time=_elapsed_ms(start), attempts=attempt)

                delay = retry.get_delay(attempt)
                if deadline is not None:
                    delay = max(0.0, min(delay, deadline - self.clock()))
                logger.info(
                    f"Retrying node {node.id} in {delay:.2f}s "
                    f"(attempt {attempt + 1} of {retry.max_retries + 1}): {e.message}"
                )
                sleep = self.sleep or context.cancellation.sleep
                try:
                    await sleep(delay)
                except WorkflowEngineError as cancelled:
                    return NodeOutcome(node=node, error=cancelled, execution_time=_elapsed_ms(start), attempts=attempt)


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000
