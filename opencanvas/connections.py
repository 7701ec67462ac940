"""Connection rules for the canvas.

A connection is legal when its target input is free (one edge per input
handle), the input exists on the target node as currently configured, and
the input accepts the source handle. Only local handle metadata is
consulted, so a check costs one scan of the edge list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .errors import ValidationError
from .handles import edge_color
from .node_registry import NodeRegistry, registry as default_registry
from .schemas import Connection, Edge, NodeConfig

logger = logging.getLogger(__name__)


def _is_handle(value) -> bool:
    return isinstance(value, str) and bool(value)


def connection_error(
    nodes: Sequence[NodeConfig],
    edges: Sequence[Edge],
    candidate: Connection,
    registry: NodeRegistry = default_registry,
) -> Optional[str]:
    """Reason the candidate would be rejected, or None when it is legal."""
    target = candidate.target
    target_handle = candidate.targetHandle
    source_handle = candidate.sourceHandle

    if not _is_handle(target) or not _is_handle(target_handle) or not _is_handle(source_handle):
        return "Connection is missing its target, target handle or source handle"

    for edge in edges:
        if edge.target == target and edge.targetHandle == target_handle:
            return f"Input '{target_handle}' of node '{target}' is already connected"

    target_node = next((n for n in nodes if n.id == target), None)
    inputs = registry.handles_for(target_node.type, target_node.data).inputs if target_node else []
    target_input = next((h for h in inputs if h.id == target_handle), None)
    if target_input is None:
        return f"Node '{target}' has no input '{target_handle}'"

    if source_handle not in target_input.allowedSourceIds:
        return f"Input '{target_handle}' does not accept '{source_handle}'"

    return None


def is_valid_connection(
    nodes: Sequence[NodeConfig],
    edges: Sequence[Edge],
    candidate: Connection,
    registry: NodeRegistry = default_registry,
) -> bool:
    return connection_error(nodes, edges, candidate, registry) is None


def validate_connection(
    nodes: Sequence[NodeConfig],
    edges: Sequence[Edge],
    candidate: Connection,
    registry: NodeRegistry = default_registry,
) -> None:
    error = connection_error(nodes, edges, candidate, registry)
    if error:
        raise ValidationError(error)


def edge_id(candidate: Connection) -> str:
    return (
        f"xy-edge__{candidate.source}{candidate.sourceHandle or ''}"
        f"-{candidate.target}{candidate.targetHandle or ''}"
    )


def build_edge(candidate: Connection, animated: bool = True) -> Edge:
    """Edge styled after the kind of value flowing through it."""
    stroke = edge_color(candidate.sourceHandle)
    return Edge(
        id=edge_id(candidate),
        source=candidate.source,
        target=candidate.target,
        sourceHandle=candidate.sourceHandle,
        targetHandle=candidate.targetHandle,
        animated=animated,
        style={"stroke": stroke, "strokeWidth": 2},
        markerEnd={"type": "arrowclosed", "color": stroke},
    )


def connect(
    nodes: Sequence[NodeConfig],
    edges: Sequence[Edge],
    candidate: Connection,
    animated: bool = True,
    registry: NodeRegistry = default_registry,
) -> List[Edge]:
    """Edge list with the candidate appended; raises ``ValidationError`` if illegal."""
    if not _is_handle(candidate.source):
        raise ValidationError("Connection is missing its source node")
    validate_connection(nodes, edges, candidate, registry)
    return [*edges, build_edge(candidate, animated)]


@dataclass
class ReconcileResult:
    nodes: List[NodeConfig]
    edges: List[Edge]
    prunedEdgeIds: List[str] = field(default_factory=list)


def reconcile(
    nodes: Sequence[NodeConfig],
    edges: Sequence[Edge],
    registry: NodeRegistry = default_registry,
) -> ReconcileResult:
    """Bring stored port lists and edges back in line with node data.

    Run after any data edit that can change a node's port set (for example
    ``imageInputCount``). Each node's ``data.inputs``/``data.outputs`` is
    refreshed, and edges whose endpoints vanished or whose target input no
    longer exists are dropped. The dropped ids are returned so the caller
    can tell the user.
    """
    refreshed: List[NodeConfig] = []
    inputs_by_node: Dict[str, set] = {}
    for node in nodes:
        handles = registry.handles_for(node.type, node.data)
        inputs_by_node[node.id] = {h.id for h in handles.inputs}
        data = dict(node.data)
        data["inputs"] = [h.model_dump() for h in handles.inputs]
        data["outputs"] = [h.model_dump() for h in handles.outputs]
        refreshed.append(node.model_copy(update={"data": data}))

    kept: List[Edge] = []
    pruned: List[str] = []
    for edge in edges:
        if edge.source not in inputs_by_node or edge.target not in inputs_by_node:
            pruned.append(edge.id)
        elif edge.targetHandle not in inputs_by_node[edge.target]:
            pruned.append(edge.id)
        else:
            kept.append(edge)

    if pruned:
        logger.info(f"Pruned {len(pruned)} dangling edge(s): {pruned}")
    return ReconcileResult(nodes=refreshed, edges=kept, prunedEdgeIds=pruned)
