"""Handle ids and the handle -> connected-field mapping.

Input handles come in a few roles (``prompt``, ``image``, ``image_<n>``,
``ref_image_<n>``, ``video``). Every role owns exactly one derived field in
the target node's data, e.g. ``image_2`` feeds ``connectedImage_2``. Both
directions of that mapping live here so propagation, reconciliation and
asset stripping never rebuild field names by hand.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional

from .schemas import HandleKind, HandleMeta

TEXT_OUTPUT = "textOutput"
IMAGE_OUTPUT = "imageOutput"
VIDEO_OUTPUT = "videoOutput"

OUTPUT_HANDLE_IDS: Dict[str, str] = {
    "text": TEXT_OUTPUT,
    "image": IMAGE_OUTPUT,
    "video": VIDEO_OUTPUT,
}

EDGE_COLORS: Dict[str, str] = {
    "text": "#38bdf8",  # sky-400
    "image": "#34d399",  # emerald-400
    "video": "#a78bfa",  # violet-400
    "default": "#94a3b8",  # slate-400
}


def kind_of_source_handle(source_handle: Optional[str]) -> Optional[HandleKind]:
    for kind, handle_id in OUTPUT_HANDLE_IDS.items():
        if source_handle == handle_id:
            return kind  # type: ignore[return-value]
    return None


def edge_color(source_handle: Optional[str]) -> str:
    kind = kind_of_source_handle(source_handle)
    return EDGE_COLORS[kind] if kind else EDGE_COLORS["default"]


# role -> (handle id prefix, data field prefix, value kind, indexed?)
_ROLES = {
    "prompt": ("prompt", "connectedPrompt", "text", False),
    "image": ("image", "connectedImage", "image", False),
    "imageRef": ("image_", "connectedImage_", "image", True),
    "refImage": ("ref_image_", "connectedRefImage_", "image", True),
    "video": ("video", "connectedVideo", "video", False),
}

_HANDLE_RE = re.compile(r"^(prompt|image|video)$|^(image_|ref_image_)(\d+)$")
_FIELD_RE = re.compile(
    r"^(connectedPrompt|connectedImage|connectedVideo)$"
    r"|^(connectedImage_|connectedRefImage_)(\d+)$"
)


@dataclass(frozen=True)
class ConnectedField:
    """One derived ``connected*`` field of a node, keyed by handle role and index."""

    role: str
    index: Optional[int] = None

    @property
    def kind(self) -> str:
        return _ROLES[self.role][2]

    @property
    def handle_id(self) -> str:
        prefix = _ROLES[self.role][0]
        return f"{prefix}{self.index}" if self.index is not None else prefix

    @property
    def field_name(self) -> str:
        prefix = _ROLES[self.role][1]
        return f"{prefix}{self.index}" if self.index is not None else prefix

    @classmethod
    def for_handle(cls, handle_id: Optional[str]) -> Optional["ConnectedField"]:
        """Field fed by an input handle, or None for handles without one."""
        if not handle_id:
            return None
        m = _HANDLE_RE.match(handle_id)
        if not m:
            return None
        if m.group(1):
            return cls(role=m.group(1))
        role = "imageRef" if m.group(2) == "image_" else "refImage"
        return cls(role=role, index=int(m.group(3)))

    @classmethod
    def from_field_name(cls, key: str) -> Optional["ConnectedField"]:
        m = _FIELD_RE.match(key)
        if not m:
            return None
        if m.group(1):
            role = {
                "connectedPrompt": "prompt",
                "connectedImage": "image",
                "connectedVideo": "video",
            }[m.group(1)]
            return cls(role=role)
        role = "imageRef" if m.group(2) == "connectedImage_" else "refImage"
        return cls(role=role, index=int(m.group(3)))


def prompt_input(label: str = "Prompt") -> HandleMeta:
    return HandleMeta(
        id="prompt",
        label=label,
        type="text",
        required=True,
        allowedSourceIds=[TEXT_OUTPUT],
    )


def image_input(handle_id: str, label: str) -> HandleMeta:
    return HandleMeta(id=handle_id, label=label, type="image", allowedSourceIds=[IMAGE_OUTPUT])


def video_input(handle_id: str, label: str) -> HandleMeta:
    return HandleMeta(id=handle_id, label=label, type="video", allowedSourceIds=[VIDEO_OUTPUT])


def output(kind: str, label: str) -> HandleMeta:
    return HandleMeta(id=OUTPUT_HANDLE_IDS[kind], label=label, type=kind)
