"""Base class for node handlers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence, Tuple, Union

from ...models.core import NodeDefinition
from ..context import CancellationToken, ExecutionContext
from ..exceptions import ConfigurationError


RequiredField = Union[str, Tuple[str, ...]]


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class NodeHandler(ABC):
    """
    Executes one node type.

    Subclasses set ``node_type`` and ``required_fields``. A required entry
    that is a tuple is satisfied when any one of its keys is present.
    """

    node_type: str = ""
    description: str = ""
    required_fields: Sequence[RequiredField] = ()

    def validate(self, node: NodeDefinition):
        """
        Check the node's configuration before dispatch.

        Raises:
            ConfigurationError: If a required field is missing or invalid
        """
        for required in self.required_fields:
            keys = required if isinstance(required, tuple) else (required,)
            if all(_is_missing(node.config.get(key)) for key in keys):
                label = " or ".join(f"'{key}'" for key in keys)
                raise ConfigurationError(
                    f"Node '{node.id}' of type '{node.type}' requires {label} in its config",
                    node_id=node.id,
                    config_key=keys[0]
                )

    @abstractmethod
    async def execute(
        self,
        node: NodeDefinition,
        context: ExecutionContext,
        token: CancellationToken
    ) -> Dict[str, Any]:
        """Run the node and return its result payload."""

    def describe(self) -> Dict[str, Any]:
        """Summary used by the node-types listing."""
        return {
            "type": self.node_type,
            "description": self.description,
            "requiredFields": [
                list(required) if isinstance(required, tuple) else required
                for required in self.required_fields
            ],
        }


def simulated(message: str, **payload) -> Dict[str, Any]:
    """Result returned by a handler that skips its side effect in test mode."""
    return {"success": True, "simulated": True, "message": message, **payload}


def completed(message: str, **payload) -> Dict[str, Any]:
    return {"success": True, "message": message, **payload}
