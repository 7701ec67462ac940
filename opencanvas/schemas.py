from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

HandleKind = Literal["text", "image", "video"]
AssetKind = Literal["image", "video", "file"]


class XYPosition(BaseModel):
    x: float = 0
    y: float = 0


class Viewport(BaseModel):
    x: float = 0
    y: float = 0
    zoom: float = 1


class HandleMeta(BaseModel):
    id: str
    label: str
    type: HandleKind
    required: bool = False
    allowedSourceIds: List[str] = Field(default_factory=list)


class NodeHandles(BaseModel):
    inputs: List[HandleMeta] = Field(default_factory=list)
    outputs: List[HandleMeta] = Field(default_factory=list)


class NodeMetadata(BaseModel):
    type: str
    label: str
    description: str
    inputs: List[HandleMeta]
    outputs: List[HandleMeta]
    defaults: Dict[str, Any]


class NodeConfig(BaseModel):
    # Canvas bookkeeping (measured, selected, dragging...) rides along untouched
    model_config = ConfigDict(extra="allow")

    id: str
    type: str  # node kind, matches NodeMetadata.type
    position: XYPosition = Field(default_factory=XYPosition)
    data: Dict[str, Any] = Field(default_factory=dict)


class Edge(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    source: str
    target: str
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None
    animated: bool = False
    style: Dict[str, Any] = Field(default_factory=dict)


class Connection(BaseModel):
    """A candidate edge, as produced by a connect gesture."""

    source: Optional[str] = None
    target: Optional[str] = None
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None


class Workflow(BaseModel):
    id: str
    name: str
    nodes: List[NodeConfig] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    viewport: Viewport = Field(default_factory=Viewport)
    # Stored as its own image file, never inside the JSON document
    thumbnail: Optional[bytes] = Field(default=None, exclude=True)
    createdAt: datetime
    updatedAt: datetime

    def to_document(self) -> Dict[str, Any]:
        """On-disk JSON form (ISO-8601 timestamps, no thumbnail)."""
        return self.model_dump(mode="json")


class WorkflowSummary(BaseModel):
    id: str
    name: str
    createdAt: datetime
    updatedAt: datetime


class GraphExport(BaseModel):
    """Asset-free graph description produced by the JSON export."""

    id: str
    name: str
    nodes: List[NodeConfig]
    edges: List[Edge]
    viewport: Viewport
    exportedAt: datetime


# --- Request bodies ---

class CreateNodeRequest(BaseModel):
    type: str
    position: XYPosition = Field(default_factory=XYPosition)


class HandlesRequest(BaseModel):
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class GraphRequest(BaseModel):
    nodes: List[NodeConfig] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)


class ConnectRequest(GraphRequest):
    connection: Connection
    animated: bool = True


class PropagateRequest(GraphRequest):
    clearOnDisconnect: bool = False


class CreateWorkflowRequest(BaseModel):
    name: Optional[str] = None


class SaveWorkflowRequest(GraphRequest):
    viewport: Optional[Viewport] = None
    thumbnail: Optional[str] = None  # base64 encoded PNG


class RenameWorkflowRequest(BaseModel):
    name: str
