"""Builds the adjacency view of a workflow that the scheduler walks."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..models.core import EdgeDefinition, NodeDefinition
from .exceptions import GraphError


logger = logging.getLogger(__name__)


@dataclass
class GraphNode:
    """A node together with its resolved edges."""
    node: NodeDefinition
    incoming_edges: List[EdgeDefinition] = field(default_factory=list)
    outgoing_edges: List[EdgeDefinition] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.node.id


@dataclass
class ExecutionGraph:
    """Nodes in declaration order with their edges, the start nodes and any dropped edges."""
    nodes: Dict[str, GraphNode]
    start_nodes: List[str]
    dangling_edges: List[EdgeDefinition] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, node_id: str) -> Optional[GraphNode]:
        return self.nodes.get(node_id)


def build_execution_graph(
    nodes: List[NodeDefinition],
    edges: List[EdgeDefinition],
    strict_edges: bool = False,
    workflow_id: Optional[str] = None
) -> ExecutionGraph:
    """
    Resolve incoming and outgoing edges for every node.

    Start nodes are the nodes without incoming edges. Edges whose source or
    target is not a node are dropped (and recorded on ``dangling_edges``)
    unless ``strict_edges`` is set, in which case they are an error.

    Raises:
        GraphError: On duplicate node ids, dangling edges in strict mode, or
            when no start node exists
    """
    graph_nodes: Dict[str, GraphNode] = {}
    for node in nodes:
        if node.id in graph_nodes:
            raise GraphError(f"Duplicate node id: {node.id}", workflow_id=workflow_id)
        graph_nodes[node.id] = GraphNode(node=node)

    dangling = []
    for edge in edges:
        source = graph_nodes.get(edge.source)
        target = graph_nodes.get(edge.target)
        if source is None or target is None:
            if strict_edges:
                missing = edge.source if source is None else edge.target
                raise GraphError(
                    f"Edge {edge.id} references unknown node: {missing}",
                    workflow_id=workflow_id,
                    details={"edge_id": edge.id, "source": edge.source, "target": edge.target}
                )
            logger.debug(f"Dropping edge {edge.id} ({edge.source} -> {edge.target}): unknown node")
            dangling.append(edge)
            continue
        source.outgoing_edges.append(edge)
        target.incoming_edges.append(edge)

    start_nodes = [node_id for node_id, graph_node in graph_nodes.items() if not graph_node.incoming_edges]
    if not start_nodes:
        raise GraphError("No starting nodes found in workflow", workflow_id=workflow_id)

    return ExecutionGraph(nodes=graph_nodes, start_nodes=start_nodes, dangling_edges=dangling)
