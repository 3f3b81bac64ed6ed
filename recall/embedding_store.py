"""
Embedding store: chunks documents, embeds the chunks, owns the result.

The store is the only writer of the similarity index. A document is
published to the index only after every one of its chunks is embedded.
"""

import asyncio
import logging

from .chunking import chunk_text
from .errors import EmbeddingUnavailable, ProviderResponseError
from .providers.base import EmbeddingProvider
from .types import Chunk, DocumentEmbedding
from .vector_store import SimilarityIndex

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 50


class EmbeddingStore:
    """
    Per-document chunk and embedding collection.

    Args:
        index: Similarity index to mirror writes into
        embedder: Embedding provider; None until the engine is initialized
        chunk_size: Maximum chunk length in characters
        chunk_overlap: Characters of overlap between consecutive chunks
        dimensions: Expected embedding width
        min_content_length: Documents shorter than this (after trimming)
            are skipped
    """

    def __init__(
        self,
        index: SimilarityIndex,
        embedder: EmbeddingProvider | None = None,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        dimensions: int = 384,
        min_content_length: int = MIN_CONTENT_LENGTH,
    ):
        self.index = index
        self.embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.dimensions = dimensions
        self.min_content_length = min_content_length
        self._documents: dict[str, DocumentEmbedding] = {}

    def _require_embedder(self) -> EmbeddingProvider:
        if self.embedder is None:
            raise EmbeddingUnavailable(
                "No embedding provider configured. Check the [embedding] section of recall.toml"
            )
        return self.embedder

    def _check_dimension(self, vector: list[float], source: str) -> None:
        """Adopt the width the provider actually returns."""
        if len(vector) != self.dimensions:
            logger.warning(
                "Embedding width %d from %s differs from configured %d; using %d from now on",
                len(vector), source, self.dimensions, len(vector),
            )
            self.dimensions = len(vector)

    async def _embed(self, text: str, source: str) -> list[float]:
        vector = await self._require_embedder().embed(text)
        if not vector:
            raise ProviderResponseError(f"Empty embedding returned for {source}")
        self._check_dimension(vector, source)
        return vector

    async def add_document(self, path: str, content: str) -> DocumentEmbedding | None:
        """
        Chunk, embed and publish a document.

        Returns the stored entry, or None if the content was too short or
        produced no chunks. Embedding errors propagate and leave any
        previous entry for the path untouched.
        """
        if not content or len(content.strip()) < self.min_content_length:
            logger.debug(
                "Skipping %s: too short to embed (%d chars)",
                path, len(content.strip()) if content else 0,
            )
            return None

        pieces = chunk_text(content, self.chunk_size, self.chunk_overlap)
        if not pieces:
            logger.debug("No chunks produced for %s", path)
            return None

        self._require_embedder()
        vectors = await asyncio.gather(*(
            self._embed(piece.content, f"{path}#{i}") for i, piece in enumerate(pieces)
        ))
        widths = {len(v) for v in vectors}
        if len(widths) > 1:
            raise ProviderResponseError(
                f"Embeddings for {path} came back with mixed widths: {sorted(widths)}"
            )

        document = DocumentEmbedding(
            path=path,
            chunks=tuple(
                Chunk(content=piece.content, position=piece.position, embedding=tuple(vector))
                for piece, vector in zip(pieces, vectors)
            ),
        )
        self._documents[path] = document
        self.index.add(document)
        logger.info("Indexed %s: %d chunks", path, len(document.chunks))
        return document

    def remove_document(self, path: str) -> None:
        """Remove a document from the store and the index. Unknown paths are fine."""
        removed = self._documents.pop(path, None) is not None
        self.index.remove(path)
        if removed:
            logger.info("Removed %s from index", path)

    async def embed_query(self, text: str) -> list[float]:
        """Embed query text with the document embedder."""
        return await self._embed(text, "query")

    def clear(self) -> None:
        self._documents.clear()
        self.index.clear()

    # -- lookup --------------------------------------------------------------

    def paths(self) -> list[str]:
        return list(self._documents)

    def get(self, path: str) -> DocumentEmbedding | None:
        return self._documents.get(path)

    def get_chunks(self, path: str) -> tuple[Chunk, ...]:
        document = self._documents.get(path)
        return document.chunks if document else ()

    def get_chunk(self, path: str, index: int) -> Chunk | None:
        chunks = self.get_chunks(path)
        if 0 <= index < len(chunks):
            return chunks[index]
        return None

    def incompatible_paths(self) -> list[str]:
        """Documents whose embeddings no longer match the current width."""
        return [
            path for path, doc in self._documents.items()
            if any(c.dimension != self.dimensions for c in doc.chunks)
        ]

    # -- persistence ---------------------------------------------------------

    def snapshot(self) -> dict[str, DocumentEmbedding]:
        return dict(self._documents)

    def restore(self, documents: dict[str, DocumentEmbedding]) -> int:
        """Replace all entries with a loaded snapshot; returns the count restored."""
        self.clear()
        for path, document in documents.items():
            if not document.chunks:
                continue
            self._documents[path] = document
            self.index.add(document)
        stale = self.incompatible_paths()
        if stale:
            logger.warning(
                "%d restored documents have embeddings that are not %d wide; they need reindexing",
                len(stale), self.dimensions,
            )
        return len(self._documents)
