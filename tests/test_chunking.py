"""Tests for header-aware chunking."""

import pytest

from recall.chunking import SEPARATOR, chunk_text, overlap_text


P1 = "Apples are red fruit. Bananas are yellow. Cherries are small."
P2 = "Dates are sweet treats. Elderberries grow wild. Figs are soft."
P3 = "Grapes make wine. Honeydew is a melon. Kiwis are fuzzy."


class TestChunkText:
    """Splitting documents into chunks."""

    def test_empty_input_gives_no_chunks(self):
        """Empty and whitespace-only content produce an empty list."""
        assert chunk_text("") == []
        assert chunk_text("  \n\n\t ") == []

    def test_short_document_is_one_chunk(self):
        """A document smaller than the chunk size is returned whole."""
        chunks = chunk_text("Just one short paragraph.")
        assert len(chunks) == 1
        assert chunks[0].content == "Just one short paragraph."
        assert chunks[0].position == 0

    def test_small_sections_are_merged(self):
        """Neighbouring sections that fit together share a chunk."""
        chunks = chunk_text("# A\n\none\n\n# B\n\ntwo")
        assert len(chunks) == 1
        assert "# A" in chunks[0].content
        assert "# B" in chunks[0].content

    def test_header_starts_new_chunk_without_overlap(self):
        """A section that does not fit starts at its header, unseeded."""
        content = "# Alpha\n\nfirst paragraph text here\n\n# Beta\n\nsecond paragraph text"
        chunks = chunk_text(content, chunk_size=40, chunk_overlap=10)

        assert len(chunks) == 2
        assert chunks[0].content == "# Alpha\n\nfirst paragraph text here"
        assert chunks[1].content == "# Beta\n\nsecond paragraph text"
        assert chunks[1].position == content.index("# Beta")

    def test_continued_chunks_are_seeded_from_previous_tail(self):
        """Each continuation begins with a tail of the chunk before it."""
        content = SEPARATOR.join([P1, P2, P3])
        chunks = chunk_text(content, chunk_size=100, chunk_overlap=30)

        assert len(chunks) == 3
        assert chunks[0].content == P1
        for prev, chunk in zip(chunks, chunks[1:]):
            assert chunk.overlap > 0
            seed = chunk.content[:chunk.overlap - len(SEPARATOR)]
            assert 0 < len(seed) <= 30
            assert prev.content.endswith(seed)

    def test_overlap_prefers_whole_sentences(self):
        """The seed for the second chunk is the last sentence of the first."""
        content = SEPARATOR.join([P1, P2, P3])
        chunks = chunk_text(content, chunk_size=100, chunk_overlap=30)
        assert chunks[1].content.startswith("Cherries are small." + SEPARATOR)
        assert chunks[1].body == P2

    def test_position_moves_back_by_overlap(self):
        """A seeded chunk's position points at where its seed sits in the source."""
        content = SEPARATOR.join([P1, P2, P3])
        chunks = chunk_text(content, chunk_size=100, chunk_overlap=30)
        second = chunks[1]
        assert second.start == content.index(P2)
        assert second.position == content.index("Cherries are small.")

    def test_chunks_stay_within_size_for_normal_paragraphs(self):
        content = SEPARATOR.join([P1, P2, P3] * 3)
        for chunk in chunk_text(content, chunk_size=100, chunk_overlap=30):
            assert len(chunk.content) <= 100

    def test_oversized_paragraph_is_one_chunk(self):
        """A paragraph longer than the chunk size is never split mid-text."""
        long_paragraph = "word " * 80
        chunks = chunk_text(long_paragraph, chunk_size=100, chunk_overlap=20)
        assert len(chunks) == 1
        assert chunks[0].content == long_paragraph.strip()

    def test_no_overlap(self):
        content = SEPARATOR.join([P1, P2, P3])
        chunks = chunk_text(content, chunk_size=100, chunk_overlap=0)
        assert [c.content for c in chunks] == [P1, P2, P3]

    def test_invalid_sizes_raise(self):
        with pytest.raises(ValueError):
            chunk_text("text", chunk_size=0)
        with pytest.raises(ValueError):
            chunk_text("text", chunk_size=100, chunk_overlap=100)
        with pytest.raises(ValueError):
            chunk_text("text", chunk_size=100, chunk_overlap=-1)


# -----------------------------------------------------------------------------

class TestOverlapText:
    """Choosing the overlap seed."""

    def test_zero_overlap(self):
        assert overlap_text("Some text.", 0) == ""

    def test_short_text_returned_whole(self):
        assert overlap_text("Short.", 50) == "Short."

    def test_trailing_sentences(self):
        assert overlap_text(P1, 40) == "Bananas are yellow. Cherries are small."

    def test_falls_back_to_characters(self):
        """Text without sentence or paragraph breaks is cut by length."""
        text = "x" * 100
        assert overlap_text(text, 20) == "x" * 20
