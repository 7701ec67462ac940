import logging
import uuid
from typing import Any, Dict, List, Optional, Type

from .nodes.base import BaseCanvasNode, ProducedValue
from .nodes.inputs import ImageUploadNode, TextInputNode
from .nodes.models import ImagenNode, NanoBananaNode, NanoBananaProNode, Veo3Node
from .schemas import NodeConfig, NodeHandles, NodeMetadata, XYPosition

logger = logging.getLogger(__name__)


class NodeRegistry:
    def __init__(self):
        self.node_classes: Dict[str, Type[BaseCanvasNode]] = {}

        # Explicit registration
        self.register(TextInputNode)
        self.register(ImageUploadNode)
        # Generators
        self.register(ImagenNode)
        self.register(NanoBananaNode)
        self.register(NanoBananaProNode)
        self.register(Veo3Node)

    def register(self, cls):
        if hasattr(cls, "NODE_TYPE"):
            self.node_classes[cls.NODE_TYPE] = cls

    def get_node_class(self, node_type: Optional[str]) -> Optional[Type[BaseCanvasNode]]:
        if not node_type:
            return None
        return self.node_classes.get(node_type)

    def handles_for(self, node_type: Optional[str], data: Optional[Dict[str, Any]] = None) -> NodeHandles:
        """Input/output ports of a node kind given its current data.

        Unknown kinds have no ports.
        """
        cls = self.get_node_class(node_type)
        if cls is None:
            return NodeHandles()
        return cls.handles(data if isinstance(data, dict) else {})

    def produced_value(self, node: NodeConfig) -> Optional[ProducedValue]:
        cls = self.get_node_class(node.type)
        if cls is None:
            return None
        return cls.produced_value(node.data)

    def create_node(self, node_type: str, position: Optional[XYPosition] = None, node_id: Optional[str] = None) -> NodeConfig:
        """A freshly placed node: label, per-kind defaults and its port set."""
        cls = self.get_node_class(node_type)
        data: Dict[str, Any] = cls.default_data() if cls else {"label": node_type}
        handles = self.handles_for(node_type, data)
        data["inputs"] = [h.model_dump() for h in handles.inputs]
        data["outputs"] = [h.model_dump() for h in handles.outputs]
        return NodeConfig(
            id=node_id or f"{node_type}-{uuid.uuid4().hex[:8]}",
            type=node_type,
            position=position or XYPosition(),
            data=data,
        )

    def get_all_metadata(self) -> List[NodeMetadata]:
        nodes = []
        for _, cls in self.node_classes.items():
            try:
                nodes.append(cls.get_schema())
            except Exception as e:
                logger.error(f"Error extracting schema from {cls}: {e}")
        return nodes


registry = NodeRegistry()
