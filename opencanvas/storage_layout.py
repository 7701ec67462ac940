import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Union

logger = logging.getLogger(__name__)

WORKFLOW_DIR_PREFIX = "opencanvas_"
LEGACY_DOCUMENT_NAME = "workflow.json"
DOCUMENT_NAME_RE = re.compile(r"^opencanvas_workflow_.*\.json$")
STAGING_PREFIX = ".staging_"

_SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def is_safe_id(workflow_id: Optional[str]) -> bool:
    return isinstance(workflow_id, str) and bool(_SAFE_ID_RE.match(workflow_id))


def is_document_name(name: str) -> bool:
    """True for the canonical or the legacy workflow document file name."""
    return name == LEGACY_DOCUMENT_NAME or bool(DOCUMENT_NAME_RE.match(name))


class StorageLayout:
    """Where each piece of a workflow lives under the storage root.

    root/
      opencanvas_<id>/
        opencanvas_workflow_<id>.json   (legacy: workflow.json)
        opencanvas_thumbnail_<id>.png
        assets/<kind>/<nodeId>_<uid><ext>
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def workflow_dir(self, workflow_id: str) -> Path:
        return self.root / f"{WORKFLOW_DIR_PREFIX}{workflow_id}"

    def document_name(self, workflow_id: str) -> str:
        return f"opencanvas_workflow_{workflow_id}.json"

    def document_path(self, workflow_id: str) -> Path:
        return self.workflow_dir(workflow_id) / self.document_name(workflow_id)

    def legacy_document_path(self, workflow_id: str) -> Path:
        return self.workflow_dir(workflow_id) / LEGACY_DOCUMENT_NAME

    def thumbnail_name(self, workflow_id: str) -> str:
        return f"opencanvas_thumbnail_{workflow_id}.png"

    def thumbnail_path(self, workflow_id: str) -> Path:
        return self.workflow_dir(workflow_id) / self.thumbnail_name(workflow_id)

    def assets_dir(self, workflow_id: str) -> Path:
        return self.workflow_dir(workflow_id) / "assets"

    def existing_document_path(self, workflow_id: str) -> Optional[Path]:
        """Canonical document if present, else the legacy one, else None."""
        if not is_safe_id(workflow_id):
            return None
        for path in (self.document_path(workflow_id), self.legacy_document_path(workflow_id)):
            if path.is_file():
                return path
        return None

    def list_workflow_ids(self) -> List[str]:
        if not self.root.exists():
            return []
        return [
            d.name[len(WORKFLOW_DIR_PREFIX):]
            for d in self.root.iterdir()
            if d.is_dir() and d.name.startswith(WORKFLOW_DIR_PREFIX)
        ]

    def make_staging_dir(self) -> Path:
        """Scratch directory on the same filesystem as the workflows."""
        self.ensure_root()
        return Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=self.root))

    def write_bytes_atomic(self, path: Path, content: bytes) -> None:
        """Write next to ``path`` then swap it in, so readers never see half a file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".tmp_", dir=path.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            tmp_path.replace(path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def migrate_legacy_document(self, workflow_id: str) -> None:
        """Drop ``workflow.json`` once the canonical document has been written."""
        legacy = self.legacy_document_path(workflow_id)
        if legacy.exists() and self.document_path(workflow_id).exists():
            legacy.unlink()
            logger.info(f"Migrated legacy workflow document for {workflow_id}")

    def remove_workflow_dir(self, workflow_id: str) -> bool:
        path = self.workflow_dir(workflow_id)
        if not path.exists():
            return False
        shutil.rmtree(path)
        return True
