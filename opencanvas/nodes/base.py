from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..schemas import HandleMeta, NodeHandles, NodeMetadata


@dataclass(frozen=True)
class ProducedValue:
    """What a node hands to whatever is wired to its output."""

    kind: str  # text, image or video
    value: Any


class BaseCanvasNode:
    """Declares a node kind: defaults, ports and what it produces.

    Subclasses are never instantiated; everything is a classmethod over the
    node's ``data`` mapping so the same declaration serves the palette, the
    connection checks and propagation.
    """

    NODE_TYPE = "base"
    LABEL = "Base Node"
    DESCRIPTION = "Base Node"
    DEFAULTS: Dict[str, Any] = {}
    INPUTS: List[HandleMeta] = []
    OUTPUTS: List[HandleMeta] = []

    @classmethod
    def get_schema(cls) -> NodeMetadata:
        handles = cls.handles({})
        return NodeMetadata(
            type=cls.NODE_TYPE,
            label=cls.LABEL,
            description=cls.DESCRIPTION,
            inputs=handles.inputs,
            outputs=handles.outputs,
            defaults=dict(cls.DEFAULTS),
        )

    @classmethod
    def handles(cls, data: Dict[str, Any]) -> NodeHandles:
        # Fixed port sets by default; data-dependent kinds override this
        return NodeHandles(
            inputs=[h.model_copy() for h in cls.INPUTS],
            outputs=[h.model_copy() for h in cls.OUTPUTS],
        )

    @classmethod
    def default_data(cls) -> Dict[str, Any]:
        return {"label": cls.LABEL, **cls.DEFAULTS}

    @classmethod
    def produced_value(cls, data: Dict[str, Any]) -> Optional[ProducedValue]:
        return None


def image_input_count(data: Dict[str, Any], default: int) -> int:
    """Number of reference-image inputs requested by ``data.imageInputCount``.

    Missing, zero and non-numeric values fall back to ``default``.
    """
    raw = data.get("imageInputCount") if isinstance(data, dict) else None
    if isinstance(raw, bool):
        return default
    try:
        count = int(raw)
    except (TypeError, ValueError):
        return default
    if count == 0:
        return default
    return max(count, 0)
