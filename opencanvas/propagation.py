"""Derive each node's ``connected*`` fields from its incoming edges.

For every edge the source node's kind says what it produces (see
``BaseCanvasNode.produced_value``); the value lands in the connected field
that belongs to the edge's target handle. Values are read from source fields
(``text``, ``imageUrl``, ``output``), never from connected fields, so one
pass reaches the fixed point and re-running it changes nothing.

Nodes without incoming edges keep whatever connected values they hold,
unless ``clear_on_disconnect`` is set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from .handles import ConnectedField
from .node_registry import NodeRegistry, registry as default_registry
from .schemas import Edge, NodeConfig

logger = logging.getLogger(__name__)


@dataclass
class PropagationResult:
    nodes: List[NodeConfig]
    changed: List[str] = field(default_factory=list)


def _connected_values(
    node: NodeConfig,
    incoming: Sequence[Edge],
    nodes_by_id: Dict[str, NodeConfig],
    registry: NodeRegistry,
) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for edge in incoming:
        source = nodes_by_id.get(edge.source)
        if source is None:
            continue
        target_field = ConnectedField.for_handle(edge.targetHandle)
        if target_field is None:
            continue
        produced = registry.produced_value(source)
        if produced is None:
            continue
        if produced.kind != target_field.kind:
            logger.debug(
                f"Skipping {produced.kind} value from {source.id} into "
                f"{target_field.kind} input {edge.targetHandle} of {node.id}"
            )
            continue
        values[target_field.field_name] = produced.value
    return values


def propagate(
    nodes: Sequence[NodeConfig],
    edges: Sequence[Edge],
    clear_on_disconnect: bool = False,
    registry: NodeRegistry = default_registry,
) -> PropagationResult:
    """Recompute connected fields for every node.

    Returns new node objects for the nodes whose data changed (the others are
    passed through as-is) together with the ids of those nodes.
    """
    nodes_by_id = {n.id: n for n in nodes}
    incoming_by_target: Dict[str, List[Edge]] = {}
    for edge in edges:
        incoming_by_target.setdefault(edge.target, []).append(edge)

    updated: List[NodeConfig] = []
    changed: List[str] = []
    for node in nodes:
        incoming = incoming_by_target.get(node.id, [])
        values = _connected_values(node, incoming, nodes_by_id, registry)

        data = node.data
        new_data = None
        for key, value in values.items():
            if key not in data or data[key] != value:
                new_data = new_data if new_data is not None else dict(data)
                new_data[key] = value

        if clear_on_disconnect:
            wired = {f.field_name for f in map(ConnectedField.for_handle, (e.targetHandle for e in incoming)) if f}
            for key in list(data):
                if ConnectedField.from_field_name(key) and key not in wired:
                    new_data = new_data if new_data is not None else dict(data)
                    new_data.pop(key, None)

        if new_data is None:
            updated.append(node)
        else:
            updated.append(node.model_copy(update={"data": new_data}))
            changed.append(node.id)

    if changed:
        logger.debug(f"Propagation updated nodes: {changed}")
    return PropagationResult(nodes=updated, changed=changed)
