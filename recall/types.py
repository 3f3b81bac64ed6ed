"""
Data types for the retrieval pipeline.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


# A header line: one to six hashes followed by whitespace
HEADER_RE = re.compile(r'^#{1,6}\s')


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


@dataclass(frozen=True)
class Chunk:
    """
    A bounded slice of a document with its embedding.

    Attributes:
        content: Chunk text, including any overlap seeded from the previous chunk
        position: Character offset in the source document where the chunk starts
        embedding: Embedding vector for the chunk text
    """
    content: str
    position: int
    embedding: tuple[float, ...]

    @property
    def is_header(self) -> bool:
        """True if the chunk begins with a markdown header line."""
        return bool(HEADER_RE.match(self.content.lstrip()))

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "embedding": list(self.embedding),
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Chunk":
        return cls(
            content=data["content"],
            position=int(data.get("position", 0)),
            embedding=tuple(float(x) for x in data["embedding"]),
        )


@dataclass(frozen=True)
class DocumentEmbedding:
    """All chunks of one indexed document, in document order."""
    path: str
    chunks: tuple[Chunk, ...]

    @property
    def dimension(self) -> int:
        """Embedding width of the document's chunks (0 when empty)."""
        return self.chunks[0].dimension if self.chunks else 0

    def to_dict(self) -> list[dict[str, Any]]:
        return [c.to_dict() for c in self.chunks]

    @classmethod
    def from_dict(cls, path: str, data: list[dict[str, Any]]) -> "DocumentEmbedding":
        return cls(path=path, chunks=tuple(Chunk.from_dict(c) for c in data))


@dataclass
class SearchResult:
    """
    One ranked chunk from a similarity search.

    Attributes:
        path: Document identifier
        score: Combined score (semantic plus all boosts)
        chunk_index: Index of the matching chunk within the document
        title_score: Boost from query terms found in the filename
        recency_score: Boost from recent modification
        semantic_score: Cosine similarity between query and chunk
        match_score: Boost from phrase and term hits in the chunk body
    """
    path: str
    score: float
    chunk_index: Optional[int] = None
    title_score: float = 0.0
    recency_score: float = 0.0
    semantic_score: float = 0.0
    match_score: float = 0.0


@dataclass
class NoteWithContent:
    """A search hit with its document body, ready for context assembly."""
    path: str
    content: str
    relevance: float
    chunk_index: Optional[int] = None

    @property
    def title(self) -> str:
        """Filename without directories."""
        return self.path.rsplit("/", 1)[-1]


@dataclass
class SearchOptions:
    """Knobs for one similarity search."""
    similarity_threshold: float = 0.5
    limit: int = 20
    title_terms: list[str] = field(default_factory=list)
    phrase_terms: list[str] = field(default_factory=list)
    active_path: Optional[str] = None


@dataclass
class ConversationMemory:
    """Notes used for the previous turn of a chat session."""
    notes: list[NoteWithContent] = field(default_factory=list)
    last_query: str = ""

    def reset(self) -> None:
        self.notes = []
        self.last_query = ""

    @property
    def is_empty(self) -> bool:
        return not self.notes or not self.last_query
