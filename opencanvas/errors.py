"""Error taxonomy shared by the graph and persistence layers.

Every public operation either returns its result or raises one of these.
The HTTP layer turns them into ``{"success": false, "error": ...}`` responses
using ``status_code``.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator


class CanvasError(Exception):
    """Base class for all expected failures."""

    status_code = 500


class ValidationError(CanvasError):
    """Malformed request: bad connection attempt, bad id, bad asset kind."""

    status_code = 400


class NotFound(CanvasError):
    """Unknown workflow id."""

    status_code = 404


class IOFailure(CanvasError):
    """Disk read/write failed. Retrying the whole operation is safe."""

    status_code = 500


class ArchiveFormatError(CanvasError):
    """Import payload is not a usable archive or graph document."""

    status_code = 422


class AssetNotFound(CanvasError):
    """Asset reference does not resolve to a file under its workflow."""

    status_code = 404


@contextmanager
def io_guard(action: str) -> Iterator[None]:
    """Re-raise ``OSError`` as ``IOFailure`` with some context."""
    try:
        yield
    except OSError as e:
        raise IOFailure(f"Failed to {action}: {e}") from e
