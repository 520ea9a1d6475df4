"""Scoped scratch space for block images and merge intermediates."""

import itertools
import logging
import shutil
import tempfile
import threading
from pathlib import Path
from types import TracebackType

logger = logging.getLogger(__name__)


class ScopedWorkspace:
    """A private temporary folder removed when the scope exits.

    Usage:
        with ScopedWorkspace(parent=Path("data"), prefix="temp_zone1_") as workspace:
            path = workspace.new_path("block", ".npy")
    """

    def __init__(self, parent: str | Path | None = None, prefix: str = "mosaic_") -> None:
        self.parent = Path(parent) if parent is not None else None
        self.prefix = prefix
        self._path: Path | None = None
        self._counter = itertools.count()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        if self._path is None:
            raise RuntimeError("Workspace is not open")
        return self._path

    def open(self) -> "ScopedWorkspace":
        if self.parent is not None:
            self.parent.mkdir(parents=True, exist_ok=True)
        self._path = Path(tempfile.mkdtemp(prefix=self.prefix, dir=self.parent))
        logger.debug(f"Created workspace {self._path}")
        return self

    def new_path(self, stem: str, suffix: str = "") -> Path:
        """Return a fresh, unused file path inside the workspace."""
        with self._lock:
            index = next(self._counter)
        return self.path / f"{stem}_{index}{suffix}"

    def cleanup(self) -> None:
        if self._path is None:
            return
        path, self._path = self._path, None
        try:
            shutil.rmtree(path)
            logger.debug(f"Removed workspace {path}")
        except FileNotFoundError:
            pass
        except OSError as exception:
            logger.warning(f"Failed to remove workspace {path}: {exception}")

    def __enter__(self) -> "ScopedWorkspace":
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.cleanup()
