"""
Archive Codec: move whole workflows in and out as a single file.

A zip archive mirrors the workflow directory (document, thumbnail and the
``assets/`` tree) and restores to an equivalent workflow. The JSON form is
graph-only; see ``exporter``.
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
import shutil
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Optional

from .assets import relocate_references
from .errors import ArchiveFormatError, NotFound, io_guard
from .exporter import generate_graph_json, import_graph_json
from .schemas import Workflow
from .storage_layout import LEGACY_DOCUMENT_NAME, is_document_name, is_safe_id
from .workflow_store import WorkflowStore, document_bytes, new_workflow_id, utcnow, workflow_from_document

logger = logging.getLogger(__name__)

EXPORT_MODES = ("zip", "json")
THUMBNAIL_PREFIX = "opencanvas_thumbnail_"

# Raised while inflating a damaged or unsupported member of an otherwise readable zip
ZIP_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError)


def _entry_parts(name: str) -> Optional[tuple]:
    """Path components of a zip entry, or None if it would land outside the target."""
    path = PurePosixPath(name.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts or (path.parts and ":" in path.parts[0]):
        return None
    return path.parts


class ArchiveCodec:
    def __init__(self, store: WorkflowStore):
        self.store = store
        self.layout = store.layout

    # ── Export ──

    async def export(self, workflow_id: str, mode: str = "zip") -> bytes:
        if mode == "json":
            return await self.export_graph(workflow_id)
        if mode == "zip":
            return await self.export_archive(workflow_id)
        raise ArchiveFormatError(f"Unknown export format '{mode}', expected one of {EXPORT_MODES}")

    async def export_archive(self, workflow_id: str) -> bytes:
        """Zip of the workflow directory with paths relative to it."""
        if not self.store.exists(workflow_id):
            raise NotFound(f"Workflow {workflow_id} not found")
        content = await asyncio.to_thread(self._zip_dir, self.layout.workflow_dir(workflow_id))
        logger.info(f"Exported workflow {workflow_id} as zip ({len(content)} bytes)")
        return content

    async def export_graph(self, workflow_id: str) -> bytes:
        workflow = await self.store.load(workflow_id)
        if workflow is None:
            raise NotFound(f"Workflow {workflow_id} not found")
        logger.info(f"Exported workflow {workflow_id} as graph JSON")
        return generate_graph_json(workflow)

    def _zip_dir(self, directory: Path) -> bytes:
        buffer = io.BytesIO()
        with io_guard(f"archive {directory.name}"):
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for path in sorted(directory.rglob("*")):
                    if path.is_file():
                        zf.write(path, arcname=path.relative_to(directory).as_posix())
        return buffer.getvalue()

    # ── Import ──

    async def import_bytes(self, content: bytes, filename: Optional[str] = None) -> Workflow:
        """Import either format, picking by content (zip magic) or file name."""
        if zipfile.is_zipfile(io.BytesIO(content)) or (filename or "").lower().endswith(".zip"):
            return await self.import_archive(content)
        return await self.import_graph(content)

    async def import_graph(self, content: bytes) -> Workflow:
        return await import_graph_json(self.store, content)

    async def import_archive(self, content: bytes) -> Workflow:
        """Restore a zip archive as a workflow.

        The archived id is kept unless a workflow with that id already
        exists, in which case the import gets a fresh id and its name is
        suffixed with " (Imported)". Nothing is left behind on failure.
        """
        workflow_id = await asyncio.to_thread(self._import_archive_sync, content)
        workflow = await self.store.load(workflow_id)
        if workflow is None:
            with io_guard(f"roll back import of {workflow_id}"):
                await asyncio.to_thread(self.layout.remove_workflow_dir, workflow_id)
            raise ArchiveFormatError(f"Imported workflow {workflow_id} could not be read back")
        logger.info(f"Imported workflow archive: {workflow_id}")
        return workflow

    def _import_archive_sync(self, content: bytes) -> str:
        try:
            zf = zipfile.ZipFile(io.BytesIO(content))
        except zipfile.BadZipFile as e:
            raise ArchiveFormatError(f"Invalid archive: {e}") from e

        with zf:
            raw = self._read_document(zf, self._find_document(zf))

            original_id = raw.get("id")
            if not is_safe_id(original_id):
                raise ArchiveFormatError(f"Invalid archive: bad workflow id {original_id!r}")

            workflow_id = original_id
            if self.layout.workflow_dir(original_id).exists():
                workflow_id = new_workflow_id()
                raw = relocate_references(raw, original_id, workflow_id)
                raw["id"] = workflow_id
                raw["name"] = f"{raw.get('name') or 'Untitled Workflow'} (Imported)"
                logger.info(f"Workflow {original_id} already exists, importing as {workflow_id}")

            try:
                workflow = workflow_from_document(raw, workflow_id)
            except ValueError as e:
                raise ArchiveFormatError(f"Invalid workflow document: {e}") from e

            with io_guard(f"import workflow {workflow_id}"):
                staging_root = self.layout.make_staging_dir()
                try:
                    staging = staging_root / "workflow"
                    staging.mkdir()
                    self._extract(zf, staging, workflow_id)
                    (staging / "assets").mkdir(exist_ok=True)
                    (staging / self.layout.document_name(workflow_id)).write_bytes(
                        document_bytes(workflow.to_document())
                    )
                    staging.rename(self.layout.workflow_dir(workflow_id))
                finally:
                    shutil.rmtree(staging_root, ignore_errors=True)
        return workflow_id

    def _find_document(self, zf: zipfile.ZipFile) -> zipfile.ZipInfo:
        """Root-level workflow document: ``workflow.json`` first, else the first canonical name."""
        candidates: List[zipfile.ZipInfo] = [
            i for i in zf.infolist() if not i.is_dir() and "/" not in i.filename and is_document_name(i.filename)
        ]
        if not candidates:
            raise ArchiveFormatError("Invalid archive: no workflow document found")
        legacy = [i for i in candidates if i.filename == LEGACY_DOCUMENT_NAME]
        if legacy:
            return legacy[0]
        return sorted(candidates, key=lambda i: i.filename)[0]

    def _read_document(self, zf: zipfile.ZipFile, entry: zipfile.ZipInfo) -> Dict[str, Any]:
        try:
            content = zf.read(entry)
        except ZIP_READ_ERRORS as e:
            raise ArchiveFormatError(f"Unreadable archive entry {entry.filename}: {e}") from e
        try:
            raw = json.loads(content.decode("utf-8"))
        except ValueError as e:
            raise ArchiveFormatError(f"Invalid workflow document {entry.filename}: {e}") from e
        if not isinstance(raw, dict):
            raise ArchiveFormatError(f"Invalid workflow document {entry.filename}: expected an object")
        now = utcnow().isoformat()
        raw.setdefault("createdAt", now)
        raw.setdefault("updatedAt", now)
        return raw

    def _extract(self, zf: zipfile.ZipFile, staging: Path, workflow_id: str) -> None:
        for info in zf.infolist():
            if info.is_dir():
                continue
            parts = _entry_parts(info.filename)
            if not parts:
                raise ArchiveFormatError(f"Invalid archive: unsafe entry {info.filename!r}")
            if len(parts) == 1 and is_document_name(parts[0]):
                continue
            if len(parts) == 1 and parts[0].startswith(THUMBNAIL_PREFIX):
                # Thumbnail file names carry the id
                parts = (self.layout.thumbnail_name(workflow_id),)
            target = staging.joinpath(*parts)
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                with zf.open(info) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
            except ZIP_READ_ERRORS as e:
                raise ArchiveFormatError(f"Unreadable archive entry {info.filename}: {e}") from e
