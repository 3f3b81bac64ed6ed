"""
In-memory similarity index over chunk embeddings.

Search is an exhaustive scan: every chunk of every document is scored
against the query vector, then lexical and freshness boosts are added.
"""

import logging
import math
import re
import threading
import time
from collections.abc import Callable, Sequence

from .nlp import word_pattern
from .providers.base import DocumentStore
from .types import Chunk, DocumentEmbedding, SearchOptions, SearchResult

logger = logging.getLogger(__name__)

RECENCY_MAX_BOOST = 0.1
RECENCY_DECAY_DAYS = 30.0
PHRASE_MATCH_BOOST = 0.2
TERM_MATCH_BOOST = 0.05
TERM_MATCH_CAP = 0.3
HEADER_BOOST = 0.05
ACTIVE_DOCUMENT_BOOST = 0.1

SECONDS_PER_DAY = 86400.0


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float | None:
    """
    Cosine of the angle between two vectors.

    Returns None when the widths differ and 0.0 when either vector is zero.
    """
    if len(a) != len(b):
        return None
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def recency_score(modified: float, now: float) -> float:
    """Boost that starts at RECENCY_MAX_BOOST and decays over about a month."""
    days = max(0.0, (now - modified) / SECONDS_PER_DAY)
    return RECENCY_MAX_BOOST * math.exp(-days / RECENCY_DECAY_DAYS)


def filename_stem(path: str) -> str:
    """Lowercased filename without directories or extension."""
    name = path.rsplit("/", 1)[-1]
    if "." in name:
        name = name.rsplit(".", 1)[0]
    return name.lower()


class SimilarityIndex:
    """
    Read-optimized mirror of the embedding store.

    Only the embedding store writes here. A single lock covers writes and
    scans, so a search never sees a document half-replaced.
    """

    def __init__(
        self,
        document_store: DocumentStore | None = None,
        title_match_boost: float = 0.5,
        clock: Callable[[], float] = time.time,
    ):
        self.document_store = document_store
        self.title_match_boost = title_match_boost
        self._clock = clock
        self._documents: dict[str, DocumentEmbedding] = {}
        self._lock = threading.RLock()

    # -- mutation ------------------------------------------------------------

    def add(self, document: DocumentEmbedding) -> None:
        """Insert or replace a document."""
        with self._lock:
            self._documents.pop(document.path, None)
            self._documents[document.path] = document
        logger.debug("Indexed %s (%d chunks)", document.path, len(document.chunks))

    def remove(self, path: str) -> bool:
        """Remove a document; returns False if it was not indexed."""
        with self._lock:
            return self._documents.pop(path, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()

    # -- lookup --------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, path: str) -> bool:
        return path in self._documents

    def paths(self) -> list[str]:
        with self._lock:
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

    # -- scoring -------------------------------------------------------------

    def title_score(self, path: str, terms: list[str], phrases: list[str] = ()) -> float:
        """Boost for query terms and phrases that appear in the filename."""
        stem = filename_stem(path)
        score = 0.0
        for term in terms:
            if word_pattern(term).search(stem):
                score += self.title_match_boost
            elif term.lower() in stem:
                score += self.title_match_boost / 2
        for phrase in phrases:
            if phrase.lower() in stem:
                score += self.title_match_boost
        return score

    def modified_times(self) -> dict[str, float]:
        """
        Modification times of every indexed document, for recency scoring.

        Documents whose time cannot be read are left out. This touches the
        document store once per document, so async callers should run it
        in a worker thread.
        """
        if self.document_store is None:
            return {}
        times = {}
        for path in self.paths():
            try:
                times[path] = self.document_store.get_modified_time(path)
            except (OSError, ValueError) as e:
                logger.debug("No modification time for %s: %s", path, e)
        return times

    def _recency(self, path: str, now: float, modified_times: dict[str, float] | None) -> float:
        if modified_times is not None:
            modified = modified_times.get(path)
            return 0.0 if modified is None else recency_score(modified, now)
        if self.document_store is None:
            return 0.0
        try:
            modified = self.document_store.get_modified_time(path)
        except (OSError, ValueError) as e:
            logger.debug("No modification time for %s: %s", path, e)
            return 0.0
        return recency_score(modified, now)

    @staticmethod
    def _body_score(text: str, term_patterns: list[re.Pattern], phrases: list[str]) -> float:
        lower = text.lower()
        phrase_hits = sum(1 for p in phrases if p.lower() in lower)
        term_hits = sum(1 for p in term_patterns if p.search(text))
        return (phrase_hits * PHRASE_MATCH_BOOST
                + min(TERM_MATCH_CAP, term_hits * TERM_MATCH_BOOST))

    def search(
        self,
        query_vector: Sequence[float],
        options: SearchOptions | None = None,
        modified_times: dict[str, float] | None = None,
    ) -> list[SearchResult]:
        """
        Rank chunks against a query vector.

        ``modified_times`` (from ``modified_times()``) supplies recency
        without touching the document store during the scan.

        Every chunk whose combined score reaches the threshold is a separate
        result, so one document can appear several times. Results are sorted
        by score (stable, so ties keep index order) and cut to the limit.
        """
        options = options or SearchOptions()
        phrases = [p for p in options.phrase_terms if p.strip()]
        phrase_set = {p.lower() for p in phrases}
        terms = list(dict.fromkeys(
            t.lower() for t in options.title_terms
            if t.strip() and t.lower() not in phrase_set
        ))
        term_patterns = [word_pattern(t) for t in terms]
        now = self._clock()

        results: list[SearchResult] = []
        skipped = 0
        with self._lock:
            if not self._documents:
                logger.debug("Search on empty index")
                return []

            for path, document in self._documents.items():
                title = self.title_score(path, terms, phrases)
                recency = self._recency(path, now, modified_times)
                active = ACTIVE_DOCUMENT_BOOST if path == options.active_path else 0.0

                for index, chunk in enumerate(document.chunks):
                    semantic = cosine_similarity(query_vector, chunk.embedding)
                    if semantic is None:
                        skipped += 1
                        continue
                    match = self._body_score(chunk.content, term_patterns, phrases)
                    header = HEADER_BOOST if chunk.is_header else 0.0
                    combined = semantic + title + recency + match + header + active
                    if combined < options.similarity_threshold:
                        continue
                    results.append(SearchResult(
                        path=path,
                        score=combined,
                        chunk_index=index,
                        title_score=title,
                        recency_score=recency,
                        semantic_score=semantic,
                        match_score=match,
                    ))

        if skipped:
            logger.warning(
                "Skipped %d chunks whose embedding width differs from the query (%d); reindex to include them",
                skipped, len(query_vector),
            )

        results.sort(key=lambda r: r.score, reverse=True)
        results = results[:options.limit]
        logger.debug(
            "Search returned %d results: %s",
            len(results),
            [(r.path, r.chunk_index, round(r.score, 3)) for r in results],
        )
        return results
