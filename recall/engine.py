"""
Retrieval engine: the public entry point.

A ``RetrievalEngine`` owns one embedding store, its similarity index,
the context assembler and the agentic loop. Nothing is global; create
an engine per store and pass it to whatever needs it.

Usage:
    engine = RetrievalEngine.from_store("~/.recall")
    await engine.initialize()
    await engine.index_all()
    context = await engine.build_context("what did I decide about the roof?")
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .agentic import AgenticRefinementLoop
from .cancel import run_cancellable
from .config import RecallConfig, get_store_path, load_or_create_config
from .context import ContextAssembler
from .embedding_store import EmbeddingStore
from .errors import ConfigurationError, SnapshotError
from .nlp import process_query
from .persistence import JsonSnapshotStore, Snapshot
from .providers.base import (
    ChatMessage,
    ChatProvider,
    DocumentStore,
    EmbeddingProvider,
    TokenCallback,
    get_registry,
)
from .types import DocumentEmbedding, NoteWithContent, SearchOptions, SearchResult
from .vector_store import SimilarityIndex

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an assistant that answers questions using the user's own notes.

Use only the information in the notes below. If the notes do not contain the answer,
say that you could not find it in the notes; do not make up facts, names, dates or quotes.
When you use a note, mention its file name.

Notes:
{context}"""

SUMMARY_PROMPTS = (
    "You are an expert at summarizing text clearly and concisely.",
    "I will provide short snippets of text, often without context. "
    "Summarize them briefly and accurately.",
    "Provide clear, direct summaries without any special formatting or markdown.",
)


@dataclass
class InitResult:
    """Outcome of engine initialization."""
    restored_documents: int = 0
    stale_documents: list[str] = field(default_factory=list)


@dataclass
class IndexReport:
    """Outcome of a full or incremental index pass."""
    indexed: int = 0
    skipped: int = 0
    removed: int = 0
    failed: dict[str, str] = field(default_factory=dict)


class RetrievalEngine:
    """
    Indexes notes and retrieves context for questions about them.

    Providers may be passed in directly; anything not passed is created
    from the config during ``initialize()``.
    """

    def __init__(
        self,
        config: RecallConfig,
        *,
        document_store: DocumentStore | None = None,
        embedder: EmbeddingProvider | None = None,
        chat: ChatProvider | None = None,
        persistence: JsonSnapshotStore | None = None,
    ):
        self.config = config
        self._document_store = document_store
        self._embedder = embedder
        self._chat = chat
        self._persistence = persistence or JsonSnapshotStore(config.snapshot_path)

        idx = config.indexing
        self.index = SimilarityIndex(
            document_store=document_store,
            title_match_boost=config.search.title_match_boost,
        )
        self.store = EmbeddingStore(
            self.index,
            embedder,
            chunk_size=idx.chunk_size,
            chunk_overlap=idx.chunk_overlap,
            dimensions=idx.dimensions,
            min_content_length=idx.min_content_length,
        )
        self.assembler = ContextAssembler(self.index)
        self._agentic: AgenticRefinementLoop | None = None

        # Serializes index writes; searches never wait on it
        self._write_lock = asyncio.Lock()
        self._init_task: asyncio.Task | None = None

    @classmethod
    def from_store(cls, store_path: str | Path | None = None, **kwargs) -> "RetrievalEngine":
        """Create an engine from the config in a store directory, creating it if needed."""
        path = get_store_path(Path(store_path) if store_path else None)
        return cls(load_or_create_config(path), **kwargs)

    # -- lifecycle -----------------------------------------------------------

    @property
    def initialized(self) -> bool:
        task = self._init_task
        return task is not None and task.done() and not task.cancelled() and task.exception() is None

    async def initialize(self) -> InitResult:
        """
        Create providers and restore the saved index.

        Safe to call many times and from concurrent tasks: all callers
        share one initialization. A failed initialization can be retried.
        """
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        task = self._init_task
        try:
            return await asyncio.shield(task)
        except Exception:
            if self._init_task is task and task.done():
                self._init_task = None
            raise

    async def _initialize(self) -> InitResult:
        registry = get_registry()
        if self._document_store is None:
            self._document_store = await asyncio.to_thread(
                registry.create_document,
                self.config.documents.name,
                self.config.documents.params,
            )
            self.index.document_store = self._document_store

        if self._embedder is None:
            params = dict(self.config.embedding.params)
            params.setdefault("dimension", self.config.indexing.dimensions)
            self._embedder = await asyncio.to_thread(
                registry.create_embedding, self.config.embedding.name, params
            )
        self.store.embedder = self._embedder
        if self._embedder.dimension != self.store.dimensions:
            logger.info(
                "Embedding provider reports width %d (configured %d)",
                self._embedder.dimension, self.store.dimensions,
            )
            self.store.dimensions = self._embedder.dimension

        restored = 0
        try:
            snapshot = await asyncio.to_thread(self._persistence.load)
        except SnapshotError as e:
            logger.warning("Ignoring unreadable snapshot, starting with an empty index: %s", e)
            snapshot = None
        if snapshot is not None:
            restored = self.store.restore(snapshot.documents)

        result = InitResult(restored_documents=restored, stale_documents=self.store.incompatible_paths())
        logger.info("Engine ready: %d documents restored", restored)
        return result

    def _require_chat(self) -> ChatProvider:
        if self._chat is None:
            self._chat = get_registry().create_chat(self.config.chat.name, self.config.chat.params)
        return self._chat

    @property
    def document_store(self) -> DocumentStore:
        if self._document_store is None:
            raise ConfigurationError("Engine is not initialized; call initialize() first")
        return self._document_store

    async def close(self) -> None:
        """Close provider HTTP clients."""
        for provider in (self._embedder, self._chat):
            aclose = getattr(provider, "aclose", None)
            if aclose is not None:
                await aclose()

    async def __aenter__(self) -> "RetrievalEngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    # -- index writes --------------------------------------------------------

    async def add_document(self, path: str, content: str | None = None) -> DocumentEmbedding | None:
        """
        Index a document, replacing any previous entry.

        Reads the document from the document store when ``content`` is
        omitted. Errors propagate: a lost write should be visible.
        """
        await self.initialize()
        if content is None:
            content = await asyncio.to_thread(self.document_store.read_document, path)
        async with self._write_lock:
            return await self.store.add_document(path, content)

    async def remove_document(self, path: str) -> None:
        """Drop a document from the index. Unknown paths are ignored."""
        await self.initialize()
        async with self._write_lock:
            self.store.remove_document(path)

    async def reindex_document(self, path: str, save: bool = True) -> DocumentEmbedding | None:
        """Re-read a changed document and replace its entry; a vanished document is removed."""
        await self.initialize()
        try:
            content = await asyncio.to_thread(self.document_store.read_document, path)
        except FileNotFoundError:
            content = None

        async with self._write_lock:
            if content is None:
                self.store.remove_document(path)
                document = None
            else:
                document = await self.store.add_document(path, content)
                if document is None:
                    # Now too short to index
                    self.store.remove_document(path)
        if save:
            await self.save()
        return document

    async def index_all(
        self,
        batch_size: int | None = None,
        only_missing: bool = False,
        progress: Callable[[int, int], None] | None = None,
    ) -> IndexReport:
        """
        Index every document in the document store, in batches.

        Documents that no longer exist are dropped from the index. With
        ``only_missing``, documents already indexed at the current
        embedding width are left alone. Per-document failures are
        collected in the report rather than raised.
        """
        await self.initialize()
        batch_size = batch_size or self.config.indexing.batch_size
        report = IndexReport()

        paths = await asyncio.to_thread(self.document_store.list_documents)
        existing = set(paths)
        if only_missing:
            stale = set(self.store.incompatible_paths())
            indexed = set(self.store.paths())
            paths = [p for p in paths if p not in indexed or p in stale]

        async with self._write_lock:
            for gone in [p for p in self.store.paths() if p not in existing]:
                self.store.remove_document(gone)
                report.removed += 1

            for start in range(0, len(paths), batch_size):
                batch = paths[start:start + batch_size]
                outcomes = await asyncio.gather(
                    *(self._index_one(path) for path in batch),
                    return_exceptions=True,
                )
                for path, outcome in zip(batch, outcomes):
                    if isinstance(outcome, asyncio.CancelledError):
                        raise outcome
                    if isinstance(outcome, BaseException):
                        logger.error("Failed to index %s: %s", path, outcome)
                        report.failed[path] = str(outcome)
                    elif outcome is None:
                        report.skipped += 1
                    else:
                        report.indexed += 1
                if progress is not None:
                    progress(min(start + batch_size, len(paths)), len(paths))

        await self.save()
        logger.info(
            "Index pass: %d indexed, %d skipped, %d removed, %d failed",
            report.indexed, report.skipped, report.removed, len(report.failed),
        )
        return report

    async def _index_one(self, path: str) -> DocumentEmbedding | None:
        content = await asyncio.to_thread(self.document_store.read_document, path)
        return await self.store.add_document(path, content)

    async def save(self) -> None:
        """Persist the current index."""
        snapshot = Snapshot(documents=self.store.snapshot())
        await asyncio.to_thread(self._persistence.save, snapshot)

    # -- queries -------------------------------------------------------------

    async def embed_query(self, text: str, cancel: asyncio.Event | None = None) -> list[float]:
        """Embed query text with the document embedder."""
        await self.initialize()
        return await run_cancellable(self.store.embed_query(text), cancel)

    async def search(
        self,
        query: str,
        limit: int | None = None,
        active_path: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[SearchResult]:
        """
        Rank indexed chunks against a query.

        Raises:
            EmbeddingUnavailable: If no embedding provider is configured
            ProviderResponseError: If the query could not be embedded
        """
        processed = process_query(query)
        if not processed.original:
            return []
        vector = await self.embed_query(processed.original, cancel)
        options = SearchOptions(
            similarity_threshold=self.config.search.similarity_threshold,
            limit=limit or self.config.search.max_notes,
            title_terms=processed.expanded_tokens,
            phrase_terms=processed.phrases,
            active_path=active_path,
        )
        modified_times = await asyncio.to_thread(self.index.modified_times)
        return self.index.search(vector, options, modified_times)

    async def find_relevant_notes(
        self,
        query: str,
        limit: int | None = None,
        active_path: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> list[NoteWithContent]:
        """
        Search and load the matching documents.

        Never raises on provider or read errors; a failed search yields
        no notes. Cancellation still propagates.
        """
        try:
            results = await self.search(query, limit, active_path, cancel)
        except Exception as e:
            logger.warning("Search for %r failed: %s", query, e)
            return []

        contents: dict[str, str | None] = {}
        notes = []
        for result in results:
            if result.path not in contents:
                try:
                    contents[result.path] = await asyncio.to_thread(
                        self.document_store.read_document, result.path
                    )
                except (OSError, ValueError) as e:
                    logger.warning("Cannot read %s, skipping: %s", result.path, e)
                    contents[result.path] = None
            content = contents[result.path]
            if content is None:
                continue
            notes.append(NoteWithContent(
                path=result.path,
                content=content,
                relevance=result.score,
                chunk_index=result.chunk_index,
            ))
        return notes

    async def build_context(
        self,
        query: str,
        notes: list[NoteWithContent] | None = None,
        budget: int | None = None,
        active_path: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """Search (unless notes are given) and assemble a bounded context."""
        budget = budget if budget is not None else self.config.search.max_context_length
        if notes is None:
            notes = await self.find_relevant_notes(query, active_path=active_path, cancel=cancel)
        return self.assembler.build_context(query, notes, budget)

    def _agentic_loop(self) -> AgenticRefinementLoop:
        if self._agentic is None:
            self._agentic = AgenticRefinementLoop(
                chat=self._require_chat(),
                assembler=self.assembler,
                search=self.find_relevant_notes,
                max_follow_ups=self.config.search.max_follow_ups,
            )
        return self._agentic

    async def build_agentic_context(
        self,
        query: str,
        budget: int | None = None,
        active_path: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """
        Build context with model-driven relevance filtering and follow-up searches.

        Falls back to plain context assembly when no chat provider can be created.
        """
        budget = budget if budget is not None else self.config.search.max_context_length
        await self.initialize()
        try:
            loop = self._agentic_loop()
        except ConfigurationError as e:
            logger.warning("Agentic context unavailable, using plain search: %s", e)
            return await self.build_context(query, budget=budget, active_path=active_path, cancel=cancel)
        return await loop.build_context(query, budget, active_path=active_path, cancel=cancel)

    def reset_conversation(self) -> None:
        """Forget the notes used in previous turns."""
        if self._agentic is not None:
            self._agentic.reset()

    async def ask(
        self,
        query: str,
        history: list[ChatMessage] | None = None,
        on_token: TokenCallback | None = None,
        agentic: bool | None = None,
        active_path: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """
        Answer a question from the notes.

        Streams tokens to ``on_token`` when given. Provider errors from
        the final answer propagate; retrieval problems only shrink the context.
        """
        await self.initialize()
        use_agentic = self.config.search.agentic if agentic is None else agentic
        if use_agentic:
            context = await self.build_agentic_context(query, active_path=active_path, cancel=cancel)
        else:
            context = await self.build_context(query, active_path=active_path, cancel=cancel)

        messages = [ChatMessage("system", SYSTEM_PROMPT.format(context=context))]
        messages.extend(history or [])
        messages.append(ChatMessage("user", query))

        chat = self._require_chat()
        if on_token is None:
            return await run_cancellable(chat.complete(messages), cancel)
        return await run_cancellable(chat.stream_complete(messages, on_token), cancel)

    async def summarize(
        self,
        text: str,
        on_token: TokenCallback | None = None,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """
        Summarize a piece of text with the chat provider.

        No retrieval is involved, so this works before anything is indexed.

        Raises:
            ValueError: If the text is empty
        """
        if not text or not text.strip():
            raise ValueError("No text to summarize")
        messages = [ChatMessage("system", prompt) for prompt in SUMMARY_PROMPTS]
        messages.append(ChatMessage("user", f"Summarize the following text:\n\n{text}"))

        chat = self._require_chat()
        logger.debug("Summarizing %d chars", len(text))
        if on_token is None:
            summary = await run_cancellable(chat.complete(messages), cancel)
        else:
            summary = await run_cancellable(chat.stream_complete(messages, on_token), cancel)
        return summary.strip()

    # -- introspection -------------------------------------------------------

    def get_indexed_paths(self) -> list[str]:
        return self.store.paths()

    def get_document_embedding(self, path: str) -> DocumentEmbedding | None:
        return self.store.get(path)
