"""
Polling watcher that feeds note changes to a ReindexScheduler.

The notes directory is listed every ``interval`` seconds and compared
with the previous listing by modification time. New and changed notes
are marked modified, vanished notes are marked deleted; a rename shows
up as one of each.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from .providers.base import DocumentStore
from .scheduler import ReindexScheduler

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """Differences found by one scan."""
    modified: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.modified or self.deleted)


def _listing(documents: DocumentStore) -> dict[str, float]:
    listing = {}
    for path in documents.list_documents():
        try:
            listing[path] = documents.get_modified_time(path)
        except (OSError, ValueError) as e:
            # Deleted between listing and stat; the next scan sees it gone
            logger.debug("Skipping %s: %s", path, e)
    return listing


class NoteWatcher:
    """
    Turns directory listings into scheduler marks.

    Call ``prime()`` first to take the baseline, then ``scan()`` as often
    as needed, or ``run()`` to poll until a stop event is set.
    """

    def __init__(
        self,
        documents: DocumentStore,
        scheduler: ReindexScheduler,
        interval: float | None = None,
    ):
        self.documents = documents
        self.scheduler = scheduler
        self.interval = scheduler.engine.config.indexing.watch_interval if interval is None else interval
        self._seen: dict[str, float] | None = None

    async def prime(self) -> int:
        """Record the current listing without marking anything."""
        self._seen = await asyncio.to_thread(_listing, self.documents)
        logger.debug("Watching %d documents", len(self._seen))
        return len(self._seen)

    async def scan(self) -> ScanResult:
        """Compare the notes with the last listing and mark what changed."""
        if self._seen is None:
            await self.prime()
            return ScanResult()

        current = await asyncio.to_thread(_listing, self.documents)
        result = ScanResult(
            modified=sorted(p for p, t in current.items() if self._seen.get(p) != t),
            deleted=sorted(p for p in self._seen if p not in current),
        )
        self._seen = current

        for path in result.deleted:
            self.scheduler.mark_deleted(path)
        for path in result.modified:
            self.scheduler.mark_modified(path)
        if result:
            logger.info("Detected %d changed and %d deleted notes",
                        len(result.modified), len(result.deleted))
        return result

    async def run(self, stop: asyncio.Event) -> None:
        """Poll until ``stop`` is set, then drain the scheduler."""
        await self.prime()
        try:
            while not stop.is_set():
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    await self.scan()
        finally:
            await self.scheduler.close(flush=True)
