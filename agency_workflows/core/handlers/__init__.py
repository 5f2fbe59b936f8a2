"""Node handlers and the registry that maps node types to them."""

import logging
from typing import Dict, List, Optional

from ..exceptions import ConfigurationError
from .base import NodeHandler, simulated, completed
from .flow import (
    TriggerHandler,
    ConditionHandler,
    DelayHandler,
    TransformHandler,
    FilterHandler,
    LoopHandler,
    ParallelHandler,
)
from .communication import NotificationHandler, EmailHandler
from .external import (
    ApiHandler,
    HttpHandler,
    WebhookHandler,
    DatabaseHandler,
    AIHandler,
    IntegrationHandler,
    ActionHandler,
)


logger = logging.getLogger(__name__)

BUILTIN_HANDLERS = (
    TriggerHandler,
    ActionHandler,
    ConditionHandler,
    DelayHandler,
    NotificationHandler,
    EmailHandler,
    ApiHandler,
    DatabaseHandler,
    WebhookHandler,
    TransformHandler,
    FilterHandler,
    LoopHandler,
    ParallelHandler,
    HttpHandler,
    AIHandler,
    IntegrationHandler,
)


class HandlerRegistry:
    """Registry of node handlers keyed by node type."""

    def __init__(self):
        self._handlers: Dict[str, NodeHandler] = {}

    def register(self, handler: NodeHandler, replace: bool = False):
        """
        Register a handler for its node type.

        Raises:
            ConfigurationError: If the type is empty or already registered
        """
        node_type = handler.node_type
        if not node_type or not node_type.strip():
            raise ConfigurationError("Handler node type cannot be empty")
        if node_type in self._handlers and not replace:
            raise ConfigurationError(f"A handler for node type '{node_type}' is already registered")
        self._handlers[node_type] = handler
        logger.debug(f"Registered handler for node type '{node_type}'")

    def unregister(self, node_type: str) -> bool:
        return self._handlers.pop(node_type, None) is not None

    def get(self, node_type: str) -> NodeHandler:
        """
        Look up the handler for a node type.

        Raises:
            ConfigurationError: If no handler is registered for the type
        """
        handler = self._handlers.get(node_type)
        if handler is None:
            raise ConfigurationError(f"Unknown node type: {node_type}")
        return handler

    def has(self, node_type: str) -> bool:
        return node_type in self._handlers

    def node_types(self) -> List[str]:
        return list(self._handlers)

    def describe(self) -> List[Dict]:
        return [handler.describe() for handler in self._handlers.values()]


def default_registry(extra: Optional[List[NodeHandler]] = None) -> HandlerRegistry:
    """Registry holding the built-in handlers plus any extra ones."""
    registry = HandlerRegistry()
    for handler_class in BUILTIN_HANDLERS:
        registry.register(handler_class())
    for handler in extra or []:
        registry.register(handler, replace=True)
    return registry


__all__ = [
    "NodeHandler",
    "HandlerRegistry",
    "default_registry",
    "BUILTIN_HANDLERS",
    "simulated",
    "completed",
]
