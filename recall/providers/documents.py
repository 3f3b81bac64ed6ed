"""
Document stores: where the notes come from.
"""

import logging
import os
from pathlib import Path

from ..errors import ConfigurationError
from .base import get_registry

logger = logging.getLogger(__name__)

# Directories that never hold user notes
SKIP_DIRS = frozenset({".git", ".obsidian", ".trash", "node_modules", "__pycache__"})


class FileDocumentStore:
    """
    Notes stored as files under a root directory.

    Document paths are relative to the root, with forward slashes,
    so an index stays valid if the folder moves.
    """

    def __init__(self, root: str | Path | None = None, extensions: list[str] | None = None):
        if root is None:
            raise ConfigurationError("Filesystem document store requires a 'root' directory")
        self.root = Path(root).expanduser().resolve()
        if not self.root.is_dir():
            raise ConfigurationError(f"Notes directory does not exist: {self.root}")
        self.extensions = tuple(e.lower() for e in (extensions or [".md"]))

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if not full.is_relative_to(self.root):
            raise ValueError(f"Path escapes the notes directory: {path}")
        return full

    def list_documents(self) -> list[str]:
        """All matching files under the root, sorted."""
        paths = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = [d for d in dirnames if d not in SKIP_DIRS and not d.startswith(".")]
            for name in filenames:
                if name.lower().endswith(self.extensions):
                    rel = Path(dirpath, name).relative_to(self.root)
                    paths.append(rel.as_posix())
        return sorted(paths)

    def read_document(self, path: str) -> str:
        return self._resolve(path).read_text(encoding="utf-8", errors="replace")

    def get_modified_time(self, path: str) -> float:
        return self._resolve(path).stat().st_mtime

    def contains(self, path: str) -> bool:
        """True if the path names an indexable file that exists."""
        try:
            full = self._resolve(path)
        except ValueError:
            return False
        return full.is_file() and full.name.lower().endswith(self.extensions)


# Register providers
get_registry().register_document("filesystem", FileDocumentStore)
