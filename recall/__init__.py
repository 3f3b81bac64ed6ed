"""
Recall

Local retrieval for a note collection: notes are chunked, embedded and
kept in an in-memory similarity index; questions are answered from a
bounded context assembled from the best-matching notes.

Quick Start:
    from recall import RetrievalEngine

    async with RetrievalEngine.from_store("~/.recall") as engine:
        await engine.index_all()
        context = await engine.build_context("what did the roofer quote?")

CLI Usage:
    recall init --notes ~/notes
    recall index
    recall ask "what did the roofer quote?"

Default Store:
    ~/.recall (created on first use).
    Override with RECALL_STORE_PATH or an explicit path.

Environment Variables:
    RECALL_STORE_PATH       - Override default store location
    RECALL_OPENAI_API_KEY   - API key for OpenAI providers
    RECALL_VERBOSE          - Set to 1 for debug logging in the CLI
"""

from .context import NO_NOTES_MESSAGE, ContextAssembler
from .engine import IndexReport, InitResult, RetrievalEngine
from .errors import (
    ConfigurationError,
    EmbeddingUnavailable,
    ProviderResponseError,
    RecallError,
    SnapshotError,
)
from .scheduler import ReindexScheduler
from .watch import NoteWatcher
from .types import (
    Chunk,
    ConversationMemory,
    DocumentEmbedding,
    NoteWithContent,
    SearchOptions,
    SearchResult,
)

__version__ = "0.3.0"
__all__ = [
    "RetrievalEngine",
    "ReindexScheduler",
    "NoteWatcher",
    "ContextAssembler",
    "InitResult",
    "IndexReport",
    "Chunk",
    "DocumentEmbedding",
    "SearchResult",
    "SearchOptions",
    "NoteWithContent",
    "ConversationMemory",
    "NO_NOTES_MESSAGE",
    "RecallError",
    "ConfigurationError",
    "ProviderResponseError",
    "EmbeddingUnavailable",
    "SnapshotError",
]
