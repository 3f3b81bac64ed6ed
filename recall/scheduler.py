"""
Debounced reindexing of changed documents.

Edits arrive in bursts; the scheduler collects the affected paths and
reindexes them once things have been quiet for ``delay`` seconds, or
immediately when ``flush()`` is called.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from .engine import RetrievalEngine

logger = logging.getLogger(__name__)

MODIFIED = "modified"
DELETED = "deleted"


@dataclass
class FlushReport:
    """What one drain of the pending set did."""
    reindexed: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def _log_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Scheduled reindex failed: %s", task.exception())


class ReindexScheduler:
    """
    Pending-work set with a resettable timer.

    Each mark (re)starts the timer; when it fires, or on ``flush()``,
    every pending path is reindexed or removed and the index is saved
    once. Must be used from within a running event loop.
    """

    def __init__(
        self,
        engine: RetrievalEngine,
        delay: float | None = None,
        update_mode: str | None = None,
    ):
        indexing = engine.config.indexing
        self.engine = engine
        self.delay = indexing.update_delay if delay is None else delay
        self.update_mode = update_mode or indexing.update_mode
        self._pending: dict[str, str] = {}
        self._timer: asyncio.TimerHandle | None = None
        self._timer_task: asyncio.Task | None = None
        self._drain_lock = asyncio.Lock()

    @property
    def pending(self) -> set[str]:
        """Paths waiting to be processed."""
        return set(self._pending)

    def mark_modified(self, path: str) -> None:
        """Queue a created or changed document for reindexing."""
        self._mark(path, MODIFIED)

    def mark_deleted(self, path: str) -> None:
        """Queue a deleted document for removal."""
        self._mark(path, DELETED)

    def mark_renamed(self, old_path: str, new_path: str) -> None:
        self._mark(old_path, DELETED)
        self._mark(new_path, MODIFIED)

    def _mark(self, path: str, kind: str) -> None:
        if self.update_mode == "none":
            logger.debug("Update mode is 'none', ignoring %s %s", kind, path)
            return
        self._pending[path] = kind
        self._arm()

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._timer_task = asyncio.ensure_future(self.flush())
        self._timer_task.add_done_callback(_log_failure)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self) -> FlushReport:
        """Process all pending work now."""
        self._cancel_timer()
        report = FlushReport()
        async with self._drain_lock:
            while self._pending:
                work, self._pending = self._pending, {}
                logger.debug("Processing %d pending documents", len(work))
                for path, kind in work.items():
                    try:
                        if kind == DELETED:
                            await self.engine.remove_document(path)
                            report.removed.append(path)
                        else:
                            await self.engine.reindex_document(path, save=False)
                            report.reindexed.append(path)
                    except Exception as e:
                        logger.error("Reindex of %s failed: %s", path, e)
                        report.failed[path] = str(e)

            if report.reindexed or report.removed:
                await self.engine.save()
                logger.info(
                    "Reindexed %d and removed %d documents",
                    len(report.reindexed), len(report.removed),
                )
        return report

    async def close(self, flush: bool = True) -> None:
        """Stop the timer, optionally draining what is pending."""
        self._cancel_timer()
        if flush:
            await self.flush()
        else:
            self._pending.clear()
        if self._timer_task is not None and not self._timer_task.done():
            await self._timer_task
