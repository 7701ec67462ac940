"""Graph-only JSON export and import.

The exported document describes nodes, edges and viewport with every asset
reference and generated output removed, so it can be shared without the
files it would otherwise point at.
"""

import json
import logging
import uuid
from typing import Any, Dict, List

import pydantic

import config

from .assets import strip_asset_references
from .errors import ArchiveFormatError, CanvasError
from .schemas import Edge, GraphExport, NodeConfig, Viewport, Workflow
from .workflow_store import WorkflowStore, valid_entries, utcnow

logger = logging.getLogger(__name__)


def strip_node_assets(nodes: List[NodeConfig]) -> List[NodeConfig]:
    return [n.model_copy(update={"data": strip_asset_references(n.data)}) for n in nodes]


def build_graph_export(workflow: Workflow) -> GraphExport:
    return GraphExport(
        id=workflow.id,
        name=workflow.name,
        nodes=strip_node_assets(workflow.nodes),
        edges=[e.model_copy(deep=True) for e in workflow.edges],
        viewport=workflow.viewport,
        exportedAt=utcnow(),
    )


def generate_graph_json(workflow: Workflow) -> bytes:
    document = build_graph_export(workflow).model_dump(mode="json")
    return json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")


def parse_graph_json(content: bytes) -> Dict[str, Any]:
    """Decode a graph-only document; requires ``nodes`` and ``edges`` lists."""
    try:
        data = json.loads(content.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ArchiveFormatError(f"Invalid workflow JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("nodes"), list) or not isinstance(data.get("edges"), list):
        raise ArchiveFormatError("Invalid workflow JSON: expected 'nodes' and 'edges' lists")
    return data


def _parse_viewport(raw: Any) -> Viewport:
    try:
        return Viewport.model_validate(raw)
    except pydantic.ValidationError:
        return Viewport(**config.DEFAULT_VIEWPORT)


async def import_graph_json(store: WorkflowStore, content: bytes) -> Workflow:
    """Create a brand-new workflow from a graph-only document."""
    data = parse_graph_json(content)
    nodes = strip_node_assets(valid_entries(data["nodes"], NodeConfig, "node", "import"))
    edges = valid_entries(data["edges"], Edge, "edge", "import")
    viewport = _parse_viewport(data.get("viewport") or config.DEFAULT_VIEWPORT)

    name = data.get("name") if isinstance(data.get("name"), str) and data.get("name") else "Imported Workflow"
    # Every import is a new workflow, never folded into a same-named create
    created = await store.create(name, creation_key=f"import-{uuid.uuid4().hex}")
    try:
        workflow = await store.save(created.id, nodes, edges, viewport)
    except CanvasError:
        await store.delete(created.id)
        raise
    logger.info(f"Imported graph JSON as workflow: {workflow.id}")
    return workflow
