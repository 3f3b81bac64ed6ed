"""
Context assembly: turn ranked notes into a bounded prompt context.
"""

import logging

from .chunking import PARAGRAPH_RE
from .nlp import ProcessedQuery, match_score, process_query
from .types import NoteWithContent
from .vector_store import SimilarityIndex

logger = logging.getLogger(__name__)

NO_NOTES_MESSAGE = "I couldn't find any notes specifically related to your query."

# Documents below this size are included whole
FULL_DOCUMENT_LENGTH = 1000
MIN_EXCERPT_LENGTH = 500
FALLBACK_EXCERPT_LENGTH = 1000
TOP_PARAGRAPHS = 3
LEADING_PARAGRAPHS = 3


def format_note_block(note: NoteWithContent, excerpt: str) -> str:
    """Render one note as a labelled context block."""
    return (
        f"File: {note.title}\n"
        f"Path: {note.path}\n"
        f"Relevance: {note.relevance:.2f}\n"
        f"Content: {excerpt}\n\n"
    )


class ContextAssembler:
    """
    Builds context strings from search hits.

    Excerpts come from stored chunks when the index has them, otherwise
    from a paragraph-scoring pass over the raw document.
    """

    def __init__(self, index: SimilarityIndex):
        self.index = index

    def build_context(self, query: str, notes: list[NoteWithContent], budget: int) -> str:
        """
        Assemble note excerpts best-first, never exceeding ``budget`` characters.

        The first block that does not fit is cut at the budget and nothing
        follows it. With no notes, returns NO_NOTES_MESSAGE.
        """
        if budget <= 0:
            return ""
        if not notes:
            return NO_NOTES_MESSAGE[:budget]

        processed = process_query(query)
        parts: list[str] = []
        used = 0
        for note in sorted(notes, key=lambda n: n.relevance, reverse=True):
            block = format_note_block(note, self.extract_excerpt(note, processed))
            room = budget - used
            if len(block) > room:
                if room > 0:
                    parts.append(block[:room])
                logger.debug("Context budget %d reached at %s", budget, note.path)
                break
            parts.append(block)
            used += len(block)
        return "".join(parts)

    def extract_excerpt(self, note: NoteWithContent, processed: ProcessedQuery) -> str:
        """Pick the part of a note most relevant to the query."""
        if note.chunk_index is not None:
            chunk = self.index.get_chunk(note.path, note.chunk_index)
            if chunk is not None:
                return chunk.content

        if len(note.content) < FULL_DOCUMENT_LENGTH:
            return note.content

        excerpt = self._from_chunks(note.path, processed)
        if excerpt:
            return excerpt
        return self._from_paragraphs(note.content, processed)

    def _from_chunks(self, path: str, processed: ProcessedQuery) -> str:
        """Stored chunks with any lexical hit, best first."""
        chunks = self.index.get_chunks(path)
        if not chunks:
            return ""
        scored = []
        for chunk in chunks:
            score = match_score(chunk.content, processed.expanded_tokens, processed.phrases).weighted
            if score > 0:
                scored.append((score, chunk.content))
        scored.sort(key=lambda item: item[0], reverse=True)
        return "\n\n".join(content for _, content in scored)

    @staticmethod
    def _from_paragraphs(content: str, processed: ProcessedQuery) -> str:
        """Top paragraphs in document order, with one neighbour on each side."""
        paragraphs = [p.strip() for p in PARAGRAPH_RE.split(content) if p.strip()]
        keywords = processed.keywords

        scored = []
        for i, paragraph in enumerate(paragraphs):
            score = match_score(paragraph, keywords, processed.phrases).weighted
            if i < LEADING_PARAGRAPHS:
                score += 1
            scored.append((score, i))
        scored.sort(key=lambda item: item[0], reverse=True)
        selected = sorted(i for _, i in scored[:TOP_PARAGRAPHS])

        if selected:
            first, last = selected[0], selected[-1]
            picked = [paragraphs[i] for i in selected]
            if first > 0:
                picked.insert(0, paragraphs[first - 1])
            if last < len(paragraphs) - 1:
                picked.append(paragraphs[last + 1])
            result = "\n\n".join(picked)
        else:
            result = ""

        if len(result) < MIN_EXCERPT_LENGTH:
            result = content[:FALLBACK_EXCERPT_LENGTH]
            if len(content) > FALLBACK_EXCERPT_LENGTH:
                result += "..."
        return result
