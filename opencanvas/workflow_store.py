"""
Workflow Store: one directory per workflow under the storage root.

Each directory holds the JSON document (id, name, nodes, edges, viewport,
timestamps), an ``assets/`` tree and an optional thumbnail. A save replaces
the whole graph payload; the last writer wins. Blocking file work runs in a
worker thread so callers on the event loop stay responsive.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type, TypeVar, Union

import pydantic

import config

from .assets import AssetStore, relocate_references
from .errors import CanvasError, NotFound, ValidationError, io_guard
from .schemas import Edge, NodeConfig, Viewport, Workflow, WorkflowSummary
from .storage_layout import LEGACY_DOCUMENT_NAME, StorageLayout, is_safe_id

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=pydantic.BaseModel)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_workflow_id() -> str:
    return uuid.uuid4().hex


def document_bytes(document: Dict[str, Any]) -> bytes:
    return json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")


def coerce_models(items: Optional[Iterable[Any]], model: Type[M]) -> List[M]:
    """Accept model instances or plain dicts."""
    return [item if isinstance(item, model) else model.model_validate(item) for item in (items or [])]


def valid_entries(raw: Any, model: Type[M], what: str, workflow_id: str) -> List[M]:
    """Parse a node/edge list, skipping entries that do not validate."""
    if not isinstance(raw, list):
        return []
    entries: List[M] = []
    for index, item in enumerate(raw):
        try:
            entries.append(model.model_validate(item))
        except pydantic.ValidationError as e:
            logger.warning(f"Skipping corrupt {what} #{index} in workflow {workflow_id}: {e.error_count()} error(s)")
    return entries


def workflow_from_document(raw: Any, workflow_id: str) -> Workflow:
    """Build a Workflow from a parsed document; raises ValueError if unusable."""
    if not isinstance(raw, dict):
        raise ValueError("workflow document must be a JSON object")
    doc = dict(raw)
    doc.setdefault("id", workflow_id)
    doc.setdefault("name", "Untitled Workflow")
    doc["nodes"] = valid_entries(raw.get("nodes"), NodeConfig, "node", workflow_id)
    doc["edges"] = valid_entries(raw.get("edges"), Edge, "edge", workflow_id)
    if not isinstance(doc.get("viewport"), dict):
        doc["viewport"] = dict(config.DEFAULT_VIEWPORT)
    return Workflow.model_validate(doc)


@dataclass
class _InFlight:
    future: asyncio.Future
    expires_at: float


class CreationGuard:
    """In-flight markers for ``create``, keyed by creation key.

    A second create with the same key while the first is running (or within
    ``grace`` seconds after it finished) gets the first one's result instead
    of a second workflow. Entries expire by timer and are also checked
    against their deadline on lookup, so a creation that never finishes
    cannot pin its key.
    """

    def __init__(self, grace: float):
        self.grace = grace
        self._entries: Dict[str, _InFlight] = {}

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[asyncio.Future]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if time.monotonic() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.future

    def begin(self, key: str) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        entry = _InFlight(future=future, expires_at=time.monotonic() + self.grace)
        self._entries[key] = entry
        loop.call_later(self.grace, self._evict, key, entry)
        return future

    def finish(self, key: str, future: asyncio.Future, result: Workflow) -> None:
        if not future.done():
            future.set_result(result)
        entry = self._entries.get(key)
        if entry is not None and entry.future is future:
            entry.expires_at = time.monotonic() + self.grace
            asyncio.get_running_loop().call_later(self.grace, self._evict, key, entry)

    def fail(self, key: str, future: asyncio.Future, error: BaseException) -> None:
        entry = self._entries.get(key)
        if entry is not None and entry.future is future:
            del self._entries[key]
        if not future.done():
            future.set_exception(error)
            # Waiters re-raise it; nobody else needs to retrieve it
            future.exception()

    def _evict(self, key: str, entry: _InFlight) -> None:
        current = self._entries.get(key)
        if current is entry and time.monotonic() >= entry.expires_at:
            del self._entries[key]


@dataclass
class _PendingSave:
    handle: asyncio.TimerHandle
    args: tuple


class WorkflowStore:
    """Persist and load workflows, one directory each."""

    def __init__(
        self,
        root: Optional[Union[str, Path]] = None,
        creation_grace: float = config.CREATION_GRACE_SECONDS,
        autosave_delay: float = config.AUTO_SAVE_DELAY,
    ) -> None:
        self.layout = StorageLayout(root or config.STORAGE_ROOT)
        self.assets = AssetStore(self.layout)
        self.autosave_delay = autosave_delay
        self._creations = CreationGuard(creation_grace)
        self._pending_saves: Dict[str, _PendingSave] = {}
        self._autosave_tasks: set = set()
        logger.info(f"WorkflowStore initialized at {self.layout.root}")

    # ── CRUD ──

    async def create(self, name: Optional[str] = None, *, creation_key: Optional[str] = None) -> Workflow:
        """Allocate and persist an empty workflow.

        Concurrent calls with the same creation key (the name, or a
        millisecond timestamp when unnamed) yield a single workflow.
        """
        now = utcnow()
        key = creation_key or name or f"workflow-{int(now.timestamp() * 1000)}"

        pending = self._creations.get(key)
        if pending is not None:
            logger.info(f"Creation already in progress for: {key}")
            workflow = await asyncio.shield(pending)
            return workflow.model_copy(deep=True)

        future = self._creations.begin(key)
        try:
            workflow = Workflow(
                id=new_workflow_id(),
                name=name or f"Workflow {now:%m/%d/%Y}",
                viewport=Viewport(**config.DEFAULT_VIEWPORT),
                createdAt=now,
                updatedAt=now,
            )
            await asyncio.to_thread(self._write, workflow)
        except BaseException as e:
            self._creations.fail(key, future, e)
            raise
        self._creations.finish(key, future, workflow)
        logger.info(f"Created workflow: {workflow.id}")
        return workflow.model_copy(deep=True)

    async def save(
        self,
        workflow_id: str,
        nodes: Sequence[Any],
        edges: Sequence[Any],
        viewport: Optional[Any] = None,
        thumbnail: Optional[bytes] = None,
    ) -> Workflow:
        """Replace the graph of an existing workflow.

        Name and createdAt are kept; a save never creates a workflow.
        """
        existing = await self.load(workflow_id)
        if existing is None:
            raise NotFound(f"Workflow {workflow_id} not found")

        if viewport is not None and not isinstance(viewport, Viewport):
            viewport = Viewport.model_validate(viewport)
        try:
            updated = existing.model_copy(
                update={
                    "nodes": coerce_models(nodes, NodeConfig),
                    "edges": coerce_models(edges, Edge),
                    "viewport": viewport or existing.viewport,
                    "thumbnail": thumbnail if thumbnail is not None else existing.thumbnail,
                    "updatedAt": utcnow(),
                }
            )
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid graph for workflow {workflow_id}: {e}") from e

        await asyncio.to_thread(self._write, updated, thumbnail)
        logger.info(f"Saved workflow: {workflow_id} ({len(updated.nodes)} nodes, {len(updated.edges)} edges)")
        return updated

    async def load(self, workflow_id: str) -> Optional[Workflow]:
        """Load a single workflow by ID, or None if there is no usable record."""
        return await asyncio.to_thread(self._read, workflow_id)

    async def list_workflows(self) -> List[WorkflowSummary]:
        """Summaries of every workflow, most recently updated first."""
        summaries = await asyncio.to_thread(self._list_sync)
        logger.info(f"Listed {len(summaries)} workflows")
        return summaries

    async def delete(self, workflow_id: str) -> None:
        """Remove a workflow and its assets. Unknown ids are ignored."""
        self.cancel_autosave(workflow_id)
        if not is_safe_id(workflow_id):
            return
        await self.assets.remove(workflow_id)
        with io_guard(f"delete workflow {workflow_id}"):
            removed = await asyncio.to_thread(self.layout.remove_workflow_dir, workflow_id)
        if removed:
            logger.info(f"Deleted workflow: {workflow_id}")

    async def rename(self, workflow_id: str, name: str) -> Workflow:
        workflow = await self.load(workflow_id)
        if workflow is None:
            raise NotFound(f"Workflow {workflow_id} not found")
        workflow.name = (name or "").strip() or "Untitled Workflow"
        workflow.updatedAt = utcnow()
        await asyncio.to_thread(self._write, workflow)
        logger.info(f'Renamed workflow: {workflow_id} to "{workflow.name}"')
        return workflow

    async def duplicate(self, workflow_id: str) -> Workflow:
        """Independent copy of a workflow, assets included, under a new id."""
        source = await self.load(workflow_id)
        if source is None:
            raise NotFound(f"Workflow {workflow_id} not found")
        duplicate = await asyncio.to_thread(self._duplicate_sync, source, new_workflow_id(), utcnow())
        logger.info(f"Duplicated workflow: {workflow_id} -> {duplicate.id}")
        return duplicate

    def exists(self, workflow_id: str) -> bool:
        return self.layout.existing_document_path(workflow_id) is not None

    # ── Debounced autosave ──

    def schedule_save(
        self,
        workflow_id: str,
        nodes: Sequence[Any],
        edges: Sequence[Any],
        viewport: Optional[Any] = None,
        delay: Optional[float] = None,
    ) -> None:
        """Save after ``delay`` seconds unless another call for the same id comes first."""
        self.cancel_autosave(workflow_id)
        loop = asyncio.get_running_loop()
        args = (workflow_id, list(nodes), list(edges), viewport)
        handle = loop.call_later(self.autosave_delay if delay is None else delay, self._fire_autosave, args)
        self._pending_saves[workflow_id] = _PendingSave(handle=handle, args=args)

    def cancel_autosave(self, workflow_id: str) -> bool:
        pending = self._pending_saves.pop(workflow_id, None)
        if pending is None:
            return False
        pending.handle.cancel()
        return True

    async def flush_autosaves(self) -> None:
        """Run every pending autosave now and wait for all of them."""
        for workflow_id in list(self._pending_saves):
            pending = self._pending_saves.pop(workflow_id)
            pending.handle.cancel()
            self._fire_autosave(pending.args)
        if self._autosave_tasks:
            await asyncio.gather(*list(self._autosave_tasks))

    def _fire_autosave(self, args: tuple) -> None:
        workflow_id = args[0]
        pending = self._pending_saves.get(workflow_id)
        if pending is not None and pending.args is args:
            del self._pending_saves[workflow_id]
        task = asyncio.ensure_future(self._autosave(*args))
        self._autosave_tasks.add(task)
        task.add_done_callback(self._autosave_tasks.discard)

    async def _autosave(self, workflow_id, nodes, edges, viewport) -> None:
        try:
            await self.save(workflow_id, nodes, edges, viewport)
            logger.info(f"Auto-saved workflow: {workflow_id}")
        except CanvasError as e:
            logger.error(f"Auto-save failed for {workflow_id}: {e}")

    # ── Internals ──

    def _write(self, workflow: Workflow, thumbnail: Optional[bytes] = None) -> None:
        with io_guard(f"write workflow {workflow.id}"):
            self.layout.assets_dir(workflow.id).mkdir(parents=True, exist_ok=True)
            self.layout.write_bytes_atomic(
                self.layout.document_path(workflow.id),
                document_bytes(workflow.to_document()),
            )
            self.layout.migrate_legacy_document(workflow.id)
            if thumbnail:
                self.layout.write_bytes_atomic(self.layout.thumbnail_path(workflow.id), bytes(thumbnail))
                logger.info(f"Saved thumbnail for workflow: {workflow.id}")

    def _read(self, workflow_id: str) -> Optional[Workflow]:
        path = self.layout.existing_document_path(workflow_id)
        if path is None:
            return None
        with io_guard(f"read workflow {workflow_id}"):
            content = path.read_bytes()
            thumbnail_path = self.layout.thumbnail_path(workflow_id)
            thumbnail = thumbnail_path.read_bytes() if thumbnail_path.is_file() else None
        try:
            # UnicodeDecodeError is a ValueError too
            workflow = workflow_from_document(json.loads(content.decode("utf-8")), workflow_id)
        except ValueError as e:
            logger.error(f"Failed to load workflow {workflow_id}: {e}")
            return None
        workflow.thumbnail = thumbnail
        return workflow

    def _list_sync(self) -> List[WorkflowSummary]:
        summaries: List[WorkflowSummary] = []
        for workflow_id in self.layout.list_workflow_ids():
            path = self.layout.existing_document_path(workflow_id)
            if path is None:
                continue
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                summaries.append(WorkflowSummary.model_validate(raw))
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping malformed workflow {workflow_id}: {e}")
        summaries.sort(key=lambda s: s.updatedAt, reverse=True)
        return summaries

    def _duplicate_sync(self, source: Workflow, new_id: str, now: datetime) -> Workflow:
        nodes = [
            NodeConfig.model_validate(relocate_references(n.model_dump(), source.id, new_id))
            for n in source.nodes
        ]
        duplicate = Workflow(
            id=new_id,
            name=f"Copy of {source.name}",
            nodes=nodes,
            edges=[e.model_copy(deep=True) for e in source.edges],
            viewport=source.viewport.model_copy(),
            thumbnail=source.thumbnail,
            createdAt=now,
            updatedAt=now,
        )

        with io_guard(f"duplicate workflow {source.id}"):
            staging_root = self.layout.make_staging_dir()
            try:
                staging = staging_root / "workflow"
                shutil.copytree(self.layout.workflow_dir(source.id), staging)

                for name in (self.layout.document_name(source.id), LEGACY_DOCUMENT_NAME):
                    (staging / name).unlink(missing_ok=True)
                old_thumbnail = staging / self.layout.thumbnail_name(source.id)
                if old_thumbnail.exists():
                    old_thumbnail.replace(staging / self.layout.thumbnail_name(new_id))
                (staging / "assets").mkdir(exist_ok=True)
                (staging / self.layout.document_name(new_id)).write_bytes(document_bytes(duplicate.to_document()))

                staging.rename(self.layout.workflow_dir(new_id))
            finally:
                shutil.rmtree(staging_root, ignore_errors=True)
        return duplicate
