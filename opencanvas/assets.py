"""Binary assets produced or uploaded by nodes.

Assets are written once under their workflow's ``assets/<kind>/`` directory
as ``<nodeId>_<uid><ext>`` and referenced from node data either by that
relative path or by a workflow-scoped URI
(``opencanvas://<workflowId>/assets/<kind>/<file>``).
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import unquote

import config

from .errors import AssetNotFound, NotFound, ValidationError, io_guard
from .handles import ConnectedField
from .storage_layout import StorageLayout, is_safe_id

logger = logging.getLogger(__name__)

ASSET_KINDS = ("image", "video", "file")

# Node data keys that hold a binary reference or a generated result
ASSET_DATA_KEYS = frozenset({"imageUrl", "imageOutput", "output", "videoUrl", "assetPath"})


def asset_uri(workflow_id: str, relative_path: str, scheme: str = config.ASSET_SCHEME) -> str:
    return f"{scheme}://{workflow_id}/{relative_path.lstrip('/')}"


def thumbnail_uri(workflow_id: str, scheme: str = config.ASSET_SCHEME) -> str:
    return f"{scheme}://{workflow_id}/thumbnail"


def parse_canvas_uri(uri: str, scheme: str = config.ASSET_SCHEME) -> Tuple[str, Optional[str]]:
    """Split a workflow-scoped URI into ``(workflow_id, relative_path)``.

    ``relative_path`` is None for the thumbnail URI.
    """
    prefix = f"{scheme}://"
    if not isinstance(uri, str) or not uri.startswith(prefix):
        raise AssetNotFound(f"Not a {scheme} URI: {uri}")
    parts = unquote(uri[len(prefix):]).strip("/").split("/")
    if len(parts) == 2 and parts[1] == "thumbnail":
        return parts[0], None
    if len(parts) < 3 or parts[1] != "assets":
        raise AssetNotFound(f"Invalid asset URI: {uri}")
    return parts[0], "/".join(parts[1:])


def is_asset_key(key: str) -> bool:
    if key in ASSET_DATA_KEYS:
        return True
    connected = ConnectedField.from_field_name(key)
    return connected is not None and connected.kind in ("image", "video")


def strip_asset_references(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of node data with every asset/output key deleted (not nulled)."""
    return {k: v for k, v in data.items() if not is_asset_key(k)}


def relocate_references(value: Any, old_id: str, new_id: str, scheme: str = config.ASSET_SCHEME) -> Any:
    """Rebind ``<scheme>://<old_id>/...`` URIs anywhere in ``value`` to ``new_id``."""
    old_prefix = f"{scheme}://{old_id}/"
    new_prefix = f"{scheme}://{new_id}/"
    if isinstance(value, str):
        return new_prefix + value[len(old_prefix):] if value.startswith(old_prefix) else value
    if isinstance(value, dict):
        return {k: relocate_references(v, old_id, new_id, scheme) for k, v in value.items()}
    if isinstance(value, list):
        return [relocate_references(v, old_id, new_id, scheme) for v in value]
    return value


def _safe_component(value: str, fallback: str) -> str:
    cleaned = "".join(c for c in str(value or "") if c.isalnum() or c in "-_")
    return cleaned or fallback


class AssetStore:
    def __init__(self, layout: StorageLayout, scheme: str = config.ASSET_SCHEME):
        self.layout = layout
        self.scheme = scheme

    async def save(self, workflow_id: str, node_id: str, content: bytes, file_name: str, kind: str) -> str:
        """Store ``content`` and return its path relative to the workflow directory."""
        if kind not in ASSET_KINDS:
            raise ValidationError(f"Unknown asset kind '{kind}', expected one of {ASSET_KINDS}")
        if not is_safe_id(workflow_id) or not self.layout.workflow_dir(workflow_id).is_dir():
            raise NotFound(f"Workflow {workflow_id} not found")
        return await asyncio.to_thread(self._save_sync, workflow_id, node_id, bytes(content), file_name, kind)

    def _save_sync(self, workflow_id, node_id, content, file_name, kind) -> str:
        ext = os.path.splitext(file_name or "")[1]
        ext = "." + _safe_component(ext[1:], "") if ext[1:] else ""
        safe_name = f"{_safe_component(node_id, 'node')}_{uuid.uuid4().hex}{ext}"
        relative_path = f"assets/{kind}/{safe_name}"
        target = self.layout.workflow_dir(workflow_id) / relative_path
        with io_guard(f"save asset {relative_path}"):
            self.layout.write_bytes_atomic(target, content)
        logger.info(f"Saved asset for node {node_id}: {relative_path}")
        return relative_path

    def resolve_path(self, workflow_id: str, relative_path: str) -> Path:
        """Absolute path of an asset; refuses anything outside ``assets/``."""
        if not is_safe_id(workflow_id) or not relative_path:
            raise AssetNotFound(f"Asset not found: {workflow_id}/{relative_path}")
        base = self.layout.assets_dir(workflow_id).resolve()
        candidate = (self.layout.workflow_dir(workflow_id) / relative_path).resolve()
        try:
            candidate.relative_to(base)
        except ValueError:
            raise AssetNotFound(f"Asset path escapes the workflow assets: {relative_path}") from None
        if not candidate.is_file():
            raise AssetNotFound(f"Asset not found: {workflow_id}/{relative_path}")
        return candidate

    async def load(self, workflow_id: str, relative_path: str) -> bytes:
        path = self.resolve_path(workflow_id, relative_path)
        with io_guard(f"read asset {relative_path}"):
            return await asyncio.to_thread(path.read_bytes)

    async def load_thumbnail(self, workflow_id: str) -> bytes:
        path = self.layout.thumbnail_path(workflow_id) if is_safe_id(workflow_id) else None
        if path is None or not path.is_file():
            raise AssetNotFound(f"No thumbnail for workflow {workflow_id}")
        with io_guard(f"read thumbnail of {workflow_id}"):
            return await asyncio.to_thread(path.read_bytes)

    async def resolve_uri(self, uri: str) -> bytes:
        """Bytes behind a workflow-scoped asset or thumbnail URI."""
        workflow_id, relative_path = parse_canvas_uri(uri, self.scheme)
        if relative_path is None:
            return await self.load_thumbnail(workflow_id)
        return await self.load(workflow_id, relative_path)

    async def remove(self, workflow_id: str) -> None:
        """Delete every asset of a workflow. Missing assets are not an error."""
        if not is_safe_id(workflow_id):
            return
        assets_dir = self.layout.assets_dir(workflow_id)
        if not assets_dir.exists():
            return
        with io_guard(f"remove assets of {workflow_id}"):
            await asyncio.to_thread(shutil.rmtree, assets_dir)
        logger.info(f"Removed assets of workflow {workflow_id}")
