"""Tests for the in-memory similarity index."""

import logging
import math

import pytest

from recall.types import Chunk, DocumentEmbedding, SearchOptions
from recall.vector_store import (
    ACTIVE_DOCUMENT_BOOST,
    HEADER_BOOST,
    SimilarityIndex,
    cosine_similarity,
    filename_stem,
    recency_score,
)

from .conftest import MemoryDocumentStore

NOW = 1_700_000_000.0


def make_doc(path: str, *chunks: tuple[str, list[float]]) -> DocumentEmbedding:
    return DocumentEmbedding(
        path=path,
        chunks=tuple(
            Chunk(content=text, position=i * 100, embedding=tuple(vec))
            for i, (text, vec) in enumerate(chunks)
        ),
    )


@pytest.fixture
def index():
    return SimilarityIndex(clock=lambda: NOW)


class TestHelpers:

    def test_cosine_identical(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_cosine_width_mismatch(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) is None

    def test_cosine_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_recency_decay(self):
        assert recency_score(NOW, NOW) == pytest.approx(0.1)
        assert recency_score(NOW - 30 * 86400, NOW) == pytest.approx(0.1 * math.exp(-1))
        # Future timestamps count as brand new
        assert recency_score(NOW + 86400, NOW) == pytest.approx(0.1)

    def test_filename_stem(self):
        assert filename_stem("home/Roof Repair.md") == "roof repair"
        assert filename_stem("README") == "readme"


# -----------------------------------------------------------------------------

class TestSearch:
    """Ranking chunks against a query vector."""

    def test_empty_index(self, index):
        assert index.search([1.0, 0.0]) == []

    def test_self_similarity(self, index):
        """Searching with a chunk's own vector finds that chunk at 1.0."""
        index.add(make_doc("a.md", ("first", [1.0, 0.0]), ("second", [0.0, 1.0])))
        results = index.search([0.0, 1.0])

        assert results[0].path == "a.md"
        assert results[0].chunk_index == 1
        assert results[0].semantic_score == pytest.approx(1.0)
        assert results[0].score == pytest.approx(1.0)

    def test_threshold_filters(self, index):
        index.add(make_doc("a.md", ("unrelated", [1.0, 0.0])))
        assert index.search([0.0, 1.0], SearchOptions(similarity_threshold=0.5)) == []

    def test_every_matching_chunk_is_a_result(self, index):
        index.add(make_doc("a.md", ("one", [1.0, 0.0]), ("two", [1.0, 0.1])))
        results = index.search([1.0, 0.0])
        assert [(r.path, r.chunk_index) for r in results] == [("a.md", 0), ("a.md", 1)]

    def test_limit(self, index):
        for i in range(5):
            index.add(make_doc(f"{i}.md", ("text", [1.0, 0.0])))
        assert len(index.search([1.0, 0.0], SearchOptions(limit=3))) == 3

    def test_ties_keep_index_order(self, index):
        """Equal scores come back in the order documents were indexed."""
        for path in ("c.md", "a.md", "b.md"):
            index.add(make_doc(path, ("same", [1.0, 0.0])))
        assert [r.path for r in index.search([1.0, 0.0])] == ["c.md", "a.md", "b.md"]

    def test_recent_document_ranks_first(self):
        """Between two equally similar notes, the fresher one wins."""
        store = MemoryDocumentStore(now=NOW)
        store.put("old.md", "x", age_days=60)
        store.put("new.md", "x", age_days=0)
        index = SimilarityIndex(document_store=store, clock=lambda: NOW)
        index.add(make_doc("old.md", ("same", [1.0, 0.0])))
        index.add(make_doc("new.md", ("same", [1.0, 0.0])))

        results = index.search([1.0, 0.0])
        assert [r.path for r in results] == ["new.md", "old.md"]
        assert results[0].recency_score == pytest.approx(0.1)
        assert results[1].recency_score == pytest.approx(0.1 * math.exp(-2))

    def test_missing_mtime_gives_no_recency(self):
        index = SimilarityIndex(document_store=MemoryDocumentStore(now=NOW), clock=lambda: NOW)
        index.add(make_doc("gone.md", ("text", [1.0, 0.0])))
        assert index.search([1.0, 0.0])[0].recency_score == 0.0

    def test_prefetched_modified_times(self):
        store = MemoryDocumentStore(now=NOW)
        store.put("new.md", "x", age_days=0)
        index = SimilarityIndex(document_store=store, clock=lambda: NOW)
        index.add(make_doc("new.md", ("same", [1.0, 0.0])))
        index.add(make_doc("gone.md", ("same", [1.0, 0.0])))

        times = index.modified_times()
        assert list(times) == ["new.md"]

        store.delete("new.md")
        results = index.search([1.0, 0.0], modified_times=times)
        assert [r.recency_score for r in results] == [pytest.approx(0.1), 0.0]

    def test_title_match_surfaces_dissimilar_note(self, index):
        """A filename hit alone can lift a note over the threshold."""
        index.add(make_doc("notes/roof.md", ("nothing relevant", [1.0, 0.0])))
        options = SearchOptions(similarity_threshold=0.5, title_terms=["roof"])

        results = index.search([0.0, 1.0], options)
        assert len(results) == 1
        assert results[0].semantic_score == pytest.approx(0.0)
        assert results[0].title_score == pytest.approx(0.5)

    def test_partial_title_match_is_half(self, index):
        assert index.title_score("roofing.md", ["roof"]) == pytest.approx(0.25)
        assert index.title_score("roof.md", ["roof"]) == pytest.approx(0.5)
        assert index.title_score("big roof job.md", [], ["roof job"]) == pytest.approx(0.5)

    def test_body_matches_boost(self, index):
        index.add(make_doc("a.md", ("The flashing quote came in today.", [1.0, 0.0])))
        options = SearchOptions(title_terms=["flashing"], phrase_terms=["quote came"])
        result = index.search([1.0, 0.0], options)[0]
        assert result.match_score == pytest.approx(0.2 + 0.05)

    def test_term_boost_is_capped(self, index):
        words = ["alpha", "beta", "gamma", "delta", "epsilon", "zeta", "eta", "theta"]
        index.add(make_doc("a.md", (" ".join(words), [1.0, 0.0])))
        result = index.search([1.0, 0.0], SearchOptions(title_terms=words))[0]
        assert result.match_score == pytest.approx(0.3)

    def test_header_chunk_boost(self, index):
        index.add(make_doc("a.md", ("plain", [1.0, 0.0]), ("# Heading\n\ntext", [1.0, 0.0])))
        results = index.search([1.0, 0.0])
        assert results[0].chunk_index == 1
        assert results[0].score - results[1].score == pytest.approx(HEADER_BOOST)

    def test_active_document_boost(self, index):
        index.add(make_doc("a.md", ("text", [1.0, 0.0])))
        index.add(make_doc("b.md", ("text", [1.0, 0.0])))
        results = index.search([1.0, 0.0], SearchOptions(active_path="b.md"))
        assert results[0].path == "b.md"
        assert results[0].score == pytest.approx(1.0 + ACTIVE_DOCUMENT_BOOST)

    def test_width_mismatch_is_skipped(self, index, caplog):
        """Chunks embedded at another width are left out, with a warning."""
        index.add(make_doc("old.md", ("stale", [1.0, 0.0, 0.0])))
        index.add(make_doc("new.md", ("fresh", [1.0, 0.0])))

        with caplog.at_level(logging.WARNING, logger="recall.vector_store"):
            results = index.search([1.0, 0.0])

        assert [r.path for r in results] == ["new.md"]
        assert "Skipped 1 chunks" in caplog.text


# -----------------------------------------------------------------------------

class TestMutation:

    def test_add_replaces(self, index):
        index.add(make_doc("a.md", ("v1", [1.0, 0.0])))
        index.add(make_doc("a.md", ("v2", [1.0, 0.0]), ("v2b", [0.0, 1.0])))
        assert len(index) == 1
        assert [c.content for c in index.get_chunks("a.md")] == ["v2", "v2b"]

    def test_remove(self, index):
        index.add(make_doc("a.md", ("v1", [1.0, 0.0])))
        assert index.remove("a.md") is True
        assert index.remove("a.md") is False
        assert "a.md" not in index

    def test_get_chunk_out_of_range(self, index):
        index.add(make_doc("a.md", ("v1", [1.0, 0.0])))
        assert index.get_chunk("a.md", 0).content == "v1"
        assert index.get_chunk("a.md", 5) is None
        assert index.get_chunk("missing.md", 0) is None
