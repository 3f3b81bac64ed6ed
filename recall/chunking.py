"""
Header-aware chunking of note text.

Documents are split at markdown headers, then at blank lines; paragraphs
are packed into chunks of at most ``chunk_size`` characters. A chunk that
continues a section starts with an overlap taken from the tail of the
previous chunk, cut at a sentence or paragraph boundary where possible.
"""

import logging
import re
from dataclasses import dataclass

from .types import HEADER_RE

logger = logging.getLogger(__name__)

SECTION_RE = re.compile(r'(?=^#{1,6}\s)', re.MULTILINE)
PARAGRAPH_RE = re.compile(r'\n\s*\n')
SENTENCE_RE = re.compile(r'(?<=[.!?])\s+')

SEPARATOR = "\n\n"


@dataclass
class TextChunk:
    """
    A chunk of text before embedding.

    Attributes:
        content: Chunk text, overlap seed included
        start: Offset in the document where the chunk's own text begins
        overlap: Length of the seeded prefix (seed plus separator), 0 if none
        continues: True if the chunk carries on from the previous chunk
            rather than starting at a header or section boundary
    """
    content: str
    start: int
    overlap: int = 0
    continues: bool = False

    @property
    def body(self) -> str:
        """The chunk's own text, without the overlap seed."""
        return self.content[self.overlap:]

    @property
    def position(self) -> int:
        """Start offset, moved back by the length of the overlap prefix."""
        return max(0, self.start - self.overlap)


def _tail(parts: list[str], sep: str, limit: int) -> str:
    """Longest run of trailing parts that fits in ``limit`` characters."""
    result = ""
    for part in reversed(parts):
        candidate = part + (sep + result if result else "")
        if len(candidate) > limit:
            break
        result = candidate
    return result


def overlap_text(text: str, overlap: int) -> str:
    """
    Pick the tail of ``text`` to repeat at the start of the next chunk.

    Whole sentences are preferred; if they give less than half of
    ``overlap``, whole paragraphs; failing that, the last ``overlap``
    characters.
    """
    if overlap <= 0:
        return ""
    if len(text) <= overlap:
        return text

    result = _tail(SENTENCE_RE.split(text), " ", overlap)
    if len(result) < overlap * 0.5:
        result = _tail(PARAGRAPH_RE.split(text), SEPARATOR, overlap)
    if len(result) < overlap * 0.5:
        result = text[-overlap:]
    return result


def _seeded(previous: str, body: str, start: int, chunk_overlap: int) -> TextChunk:
    seed = overlap_text(previous, chunk_overlap)
    if not seed:
        return TextChunk(body, start, 0, True)
    return TextChunk(seed + SEPARATOR + body, start, len(seed) + len(SEPARATOR), True)


def _split_sections(content: str, chunk_size: int, chunk_overlap: int) -> list[TextChunk]:
    chunks: list[TextChunk] = []
    cursor = 0

    for section in SECTION_RE.split(content):
        if not section.strip():
            continue

        current: TextChunk | None = None
        previous = ""

        for raw in PARAGRAPH_RE.split(section):
            paragraph = raw.strip()
            if not paragraph:
                continue

            offset = content.find(paragraph, cursor)
            if offset < 0:
                offset = cursor
            cursor = offset + len(paragraph)

            if current is None:
                current = TextChunk(paragraph, offset)
                continue

            is_header = bool(HEADER_RE.match(paragraph))
            too_big = len(current.content) + len(SEPARATOR) + len(paragraph) > chunk_size

            if is_header or too_big:
                chunks.append(current)
                previous = current.content
                if is_header:
                    current = TextChunk(paragraph, offset)
                else:
                    current = _seeded(previous, paragraph, offset, chunk_overlap)
            else:
                current.content += SEPARATOR + paragraph

        if current is not None:
            chunks.append(current)

    return chunks


def _consolidate(chunks: list[TextChunk], chunk_size: int, chunk_overlap: int) -> list[TextChunk]:
    """Merge neighbouring chunks while the result stays within ``chunk_size``."""
    merged: list[TextChunk] = []
    group: TextChunk | None = None

    for chunk in chunks:
        if group is None:
            group = TextChunk(chunk.content, chunk.start, chunk.overlap, chunk.continues)
            continue

        # The group already holds this chunk's predecessor, so its seed is redundant
        body = chunk.body
        if len(group.content) + len(SEPARATOR) + len(body) <= chunk_size:
            group.content += SEPARATOR + body
            continue

        merged.append(group)
        if chunk.continues:
            group = _seeded(group.content, body, chunk.start, chunk_overlap)
        else:
            group = TextChunk(body, chunk.start)

    if group is not None:
        merged.append(group)
    return merged


def chunk_text(content: str, chunk_size: int = 1000, chunk_overlap: int = 200) -> list[TextChunk]:
    """
    Split document text into overlapping, header-aware chunks.

    Empty or whitespace-only content gives an empty list. A single
    paragraph longer than ``chunk_size`` becomes one oversized chunk.

    Raises:
        ValueError: If chunk_size is not positive or the overlap is not
            smaller than chunk_size
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if not 0 <= chunk_overlap < chunk_size:
        raise ValueError(
            f"chunk_overlap must be in [0, {chunk_size}), got {chunk_overlap}"
        )
    if not content or not content.strip():
        return []

    chunks = _consolidate(_split_sections(content, chunk_size, chunk_overlap),
                          chunk_size, chunk_overlap)
    logger.debug("Chunked %d chars into %d chunks", len(content), len(chunks))
    return chunks
