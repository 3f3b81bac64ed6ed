"""Tests for the polling note watcher."""

import asyncio

import pytest

from recall.scheduler import ReindexScheduler
from recall.watch import NoteWatcher


@pytest.fixture
def scheduler(engine):
    return ReindexScheduler(engine, delay=60)


@pytest.fixture
def watcher(documents, scheduler):
    return NoteWatcher(documents, scheduler, interval=0.02)


class TestScan:
    """Listing comparison."""

    @pytest.mark.asyncio
    async def test_first_scan_only_primes(self, watcher, scheduler):
        result = await watcher.scan()
        assert not result
        assert scheduler.pending == set()

    @pytest.mark.asyncio
    async def test_changes_are_marked(self, watcher, scheduler, documents):
        await watcher.prime()
        documents.put("new.md", "A new note about the bicycle gears and brake pads.")
        documents.put("garden.md", "Moved the raised beds to the north side.", age_days=-1)
        documents.delete("books.md")

        result = await watcher.scan()

        assert result.modified == ["garden.md", "new.md"]
        assert result.deleted == ["books.md"]
        assert scheduler.pending == {"garden.md", "new.md", "books.md"}

    @pytest.mark.asyncio
    async def test_unchanged_notes_not_marked(self, watcher, scheduler):
        await watcher.prime()
        assert not await watcher.scan()
        assert scheduler.pending == set()

    @pytest.mark.asyncio
    async def test_rename_is_delete_plus_add(self, watcher, scheduler, documents):
        await watcher.prime()
        content = documents.documents["books.md"]
        documents.delete("books.md")
        documents.put("reading.md", content)

        result = await watcher.scan()

        assert result.modified == ["reading.md"]
        assert result.deleted == ["books.md"]


class TestRun:

    @pytest.mark.asyncio
    async def test_run_reindexes_and_drains_on_stop(self, engine, watcher, documents):
        await engine.index_all()
        stop = asyncio.Event()
        task = asyncio.ensure_future(watcher.run(stop))
        await asyncio.sleep(0.05)

        documents.put("new.md", "A new note about the bicycle gears and brake pads.")
        await asyncio.sleep(0.1)
        stop.set()
        await task

        assert "new.md" in engine.get_indexed_paths()

    @pytest.mark.asyncio
    async def test_interval_from_config(self, documents, scheduler, config):
        config.indexing.watch_interval = 7.5
        assert NoteWatcher(documents, scheduler).interval == 7.5
