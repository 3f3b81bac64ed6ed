"""
Shared pytest fixtures for recall tests.

Provides fake providers so tests never touch a network endpoint.
"""

import asyncio
import hashlib
import math
import re
import time

import pytest

from recall.config import RecallConfig
from recall.engine import RetrievalEngine
from recall.providers.base import ChatMessage, emit_token


class FakeEmbedder:
    """
    Deterministic bag-of-words embedder.

    Each lowercased word is hashed into one of ``dimension`` buckets, so
    identical texts embed identically and texts sharing words are close.
    Specific texts can be pinned to a vector with ``vectors``.
    """

    def __init__(self, dimension: int = 16, vectors: dict | None = None, delay: float = 0.0):
        self.dimension = dimension
        self.vectors = dict(vectors or {})
        self.delay = delay
        self.calls: list[str] = []
        self.fail_on: set[str] = set()

    def vector_for(self, text: str) -> list[float]:
        if text in self.vectors:
            return list(self.vectors[text])
        vec = [0.0] * self.dimension
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vec[bucket] += 1.0
        norm = math.sqrt(sum(x * x for x in vec)) or 1.0
        return [x / norm for x in vec]

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        for marker in self.fail_on:
            if marker in text:
                raise RuntimeError(f"embedding failed for {marker}")
        return self.vector_for(text)


class ScriptedChat:
    """
    Chat provider that replays canned replies in order.

    A reply that is an exception instance is raised instead. Once the
    script runs out, ``default`` is returned.
    """

    def __init__(self, replies: list | None = None, default: str = ""):
        self.replies = list(replies or [])
        self.default = default
        self.requests: list[list[ChatMessage]] = []

    def _next(self):
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def complete(self, messages: list[ChatMessage]) -> str:
        self.requests.append(list(messages))
        return self._next()

    async def stream_complete(self, messages: list[ChatMessage], on_token) -> str:
        self.requests.append(list(messages))
        reply = self._next()
        for token in re.findall(r"\S+\s*", reply):
            await emit_token(on_token, token)
        return reply


class MemoryDocumentStore:
    """Notes held in a dict, with settable modification times."""

    def __init__(self, documents: dict[str, str] | None = None, now: float | None = None):
        self.now = now if now is not None else time.time()
        self.documents: dict[str, str] = {}
        self.mtimes: dict[str, float] = {}
        for path, content in (documents or {}).items():
            self.put(path, content)

    def put(self, path: str, content: str, age_days: float = 0.0) -> None:
        self.documents[path] = content
        self.mtimes[path] = self.now - age_days * 86400

    def delete(self, path: str) -> None:
        self.documents.pop(path, None)
        self.mtimes.pop(path, None)

    def list_documents(self) -> list[str]:
        return sorted(self.documents)

    def read_document(self, path: str) -> str:
        if path not in self.documents:
            raise FileNotFoundError(path)
        return self.documents[path]

    def get_modified_time(self, path: str) -> float:
        if path not in self.mtimes:
            raise FileNotFoundError(path)
        return self.mtimes[path]


ROOF_NOTE = (
    "# Roof repair\n\n"
    "The roofer quoted 4200 for replacing the flashing around the chimney. "
    "Work can start in May if the weather holds."
)

GARDEN_NOTE = (
    "# Garden plans\n\n"
    "Plant tomatoes and basil along the south fence this spring. "
    "The compost bin needs turning every two weeks."
)

BOOK_NOTE = (
    "# Reading list\n\n"
    "Finish the history of the printing press, then start the novel "
    "about the lighthouse keeper that Sam recommended."
)


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def chat():
    return ScriptedChat()


@pytest.fixture
def documents():
    return MemoryDocumentStore({
        "home/roof.md": ROOF_NOTE,
        "garden.md": GARDEN_NOTE,
        "books.md": BOOK_NOTE,
    })


@pytest.fixture
def config(tmp_path):
    """Default config in a temporary store, with a permissive threshold."""
    config = RecallConfig(path=tmp_path)
    config.indexing.dimensions = 16
    config.search.similarity_threshold = 0.1
    return config


@pytest.fixture
def engine(config, documents, embedder, chat):
    """Engine wired to fake providers; not yet initialized."""
    return RetrievalEngine(config, document_store=documents, embedder=embedder, chat=chat)
