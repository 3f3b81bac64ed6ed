"""
On-disk snapshot of the embedding store.

One JSON file holds every document's chunks with their embeddings, plus
a schema version and a last-updated timestamp.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .errors import SnapshotError
from .types import DocumentEmbedding, utc_now

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class Snapshot:
    """All indexed documents at a point in time."""
    documents: dict[str, DocumentEmbedding] = field(default_factory=dict)
    version: int = SNAPSHOT_VERSION
    last_updated: str = field(default_factory=utc_now)


class JsonSnapshotStore:
    """Loads and saves snapshots at a fixed path."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> Snapshot | None:
        """
        Read the snapshot, or None if there is none yet.

        Raises:
            SnapshotError: If the file is unreadable or from a newer version
        """
        if not self.path.exists():
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SnapshotError(f"Cannot read snapshot {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise SnapshotError(f"Snapshot {self.path} is not a JSON object")
        version = data.get("version", 1)
        if not isinstance(version, int) or version > SNAPSHOT_VERSION:
            raise SnapshotError(
                f"Snapshot version {version} is newer than supported ({SNAPSHOT_VERSION})"
            )

        raw_documents = data.get("documents") or {}
        if not isinstance(raw_documents, dict):
            raise SnapshotError(f"Snapshot {self.path} has malformed documents section")

        documents = {}
        for path, chunks in raw_documents.items():
            try:
                documents[path] = DocumentEmbedding.from_dict(path, chunks)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Dropping malformed snapshot entry %s: %s", path, e)
        logger.info("Loaded snapshot with %d documents from %s", len(documents), self.path)
        return Snapshot(
            documents=documents,
            version=version,
            last_updated=data.get("last_updated", ""),
        )

    def save(self, snapshot: Snapshot) -> None:
        """Write the snapshot atomically: temp file, then rename."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": snapshot.version,
            "last_updated": snapshot.last_updated,
            "documents": {p: d.to_dict() for p, d in snapshot.documents.items()},
        }
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".embeddings-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.info("Saved snapshot with %d documents to %s", len(snapshot.documents), self.path)
