"""
Agentic context refinement.

After the usual search and assembly, the chat model judges whether the
context answers the question. If not, its suggested follow-up queries
are searched (at most two rounds), filtered for relevance and appended.
A short conversation memory lets follow-up turns reuse the notes from
the previous turn instead of searching from scratch.

Every model call here is advisory: if a call fails or its reply cannot
be parsed, the loop logs it and carries on with what it has.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .cancel import check_cancelled, run_cancellable
from .context import NO_NOTES_MESSAGE, ContextAssembler
from .nlp import process_query
from .parsing import (
    ContinuityVerdict,
    Parsed,
    RelevanceVerdict,
    SufficiencyVerdict,
    extract_continuity_fields,
    extract_relevance_fields,
    extract_sufficiency_fields,
    parse_reply,
)
from .providers.base import ChatMessage, ChatProvider
from .types import ConversationMemory, NoteWithContent

logger = logging.getLogger(__name__)

# Called as search(query, limit=..., active_path=..., cancel=...)
SearchFn = Callable[..., Awaitable[list[NoteWithContent]]]

EXCERPT_PREVIEW_LENGTH = 300

JUDGE_SYSTEM_PROMPT = (
    "You help a retrieval system decide what notes to show an assistant. "
    "Answer with a single JSON object and nothing else."
)

RELEVANCE_PROMPT = """Question: {query}

Candidate notes:
{candidates}

Which notes contain information that helps answer the question?
Reply as JSON: {{"relevant": [numbers of the relevant notes]}}
Use an empty list if none of them help."""

SUFFICIENCY_PROMPT = """Question: {query}

Context gathered from the user's notes:
---
{context}
---

Is this context enough to answer the question well?
If not, suggest up to two short search queries that would find the missing information.
Reply as JSON: {{"sufficient": true or false, "follow_up_queries": ["...", "..."]}}"""

CONTINUITY_PROMPT = """Previous question: {previous}
Notes used to answer it: {titles}

New question: {query}

Is the new question a continuation of the previous one?
If it is, do the notes above probably cover it, or is a new search needed?
Reply as JSON: {{"is_continuation": true or false, "needs_new_search": true or false, "search_query": "query to run if a new search is needed"}}"""


class AgenticRefinementLoop:
    """
    Multi-round context builder driven by a chat model.

    Args:
        chat: Model used to judge relevance and sufficiency
        assembler: Builds the context blocks
        search: Async callable ``(query, *, limit, active_path, cancel) -> notes``
        max_follow_ups: Cap on follow-up search rounds per turn
        follow_up_limit: Result limit for follow-up searches
        high_relevance_threshold: Score that still counts as relevant
            when the model's relevance verdict cannot be parsed
    """

    def __init__(
        self,
        chat: ChatProvider,
        assembler: ContextAssembler,
        search: SearchFn,
        max_follow_ups: int = 2,
        follow_up_limit: int = 5,
        high_relevance_threshold: float = 0.8,
    ):
        self.chat = chat
        self.assembler = assembler
        self.search = search
        self.max_follow_ups = max_follow_ups
        self.follow_up_limit = follow_up_limit
        self.high_relevance_threshold = high_relevance_threshold
        self.memory = ConversationMemory()

    def reset(self) -> None:
        """Forget the previous turn."""
        self.memory.reset()

    async def _ask(self, prompt: str, cancel: asyncio.Event | None) -> str:
        check_cancelled(cancel)
        messages = [
            ChatMessage("system", JUDGE_SYSTEM_PROMPT),
            ChatMessage("user", prompt),
        ]
        return await run_cancellable(self.chat.complete(messages), cancel)

    async def _search(
        self,
        query: str,
        limit: int | None,
        cancel: asyncio.Event | None,
        active_path: str | None = None,
    ) -> list[NoteWithContent]:
        check_cancelled(cancel)
        try:
            return await self.search(query, limit=limit, active_path=active_path, cancel=cancel)
        except Exception as e:
            logger.warning("Search for %r failed: %s", query, e)
            return []

    # -- relevance -----------------------------------------------------------

    def _fallback_relevant(self, notes: list[NoteWithContent]) -> list[NoteWithContent]:
        strong = [n for n in notes if n.relevance > self.high_relevance_threshold]
        if strong:
            return strong
        return [max(notes, key=lambda n: n.relevance)]

    async def filter_relevant(
        self,
        query: str,
        notes: list[NoteWithContent],
        cancel: asyncio.Event | None = None,
    ) -> list[NoteWithContent]:
        """
        Keep only the notes the model judges relevant to the query.

        If the model cannot be asked or its reply cannot be read, keeps
        notes scoring above the high-relevance threshold, or else the
        single best note.
        """
        if not notes:
            return []

        processed = process_query(query)
        candidates = "\n\n".join(
            f"[{i}] {note.title}\n"
            f"{self.assembler.extract_excerpt(note, processed)[:EXCERPT_PREVIEW_LENGTH]}"
            for i, note in enumerate(notes, start=1)
        )
        try:
            reply = await self._ask(RELEVANCE_PROMPT.format(query=query, candidates=candidates), cancel)
        except Exception as e:
            logger.warning("Relevance check failed, keeping top-scoring notes: %s", e)
            return self._fallback_relevant(notes)

        result = parse_reply(reply, RelevanceVerdict, extract_relevance_fields)
        if not isinstance(result, Parsed):
            return self._fallback_relevant(notes)

        indices = [i for i in dict.fromkeys(result.record.relevant) if 1 <= i <= len(notes)]
        if result.record.relevant and not indices:
            logger.warning("Relevance reply named no valid notes: %s", result.record.relevant)
            return self._fallback_relevant(notes)
        kept = [notes[i - 1] for i in indices]
        logger.debug("Relevance filter kept %d of %d notes", len(kept), len(notes))
        return kept

    # -- sufficiency ---------------------------------------------------------

    async def evaluate_sufficiency(
        self,
        query: str,
        context: str,
        cancel: asyncio.Event | None = None,
    ) -> SufficiencyVerdict:
        """Ask whether the context answers the query. Defaults to sufficient."""
        try:
            reply = await self._ask(SUFFICIENCY_PROMPT.format(query=query, context=context), cancel)
        except Exception as e:
            logger.warning("Sufficiency check failed, using context as is: %s", e)
            return SufficiencyVerdict(sufficient=True)

        result = parse_reply(reply, SufficiencyVerdict, extract_sufficiency_fields)
        if isinstance(result, Parsed):
            return result.record
        return SufficiencyVerdict(sufficient=True)

    # -- continuity ----------------------------------------------------------

    async def check_continuity(
        self,
        query: str,
        cancel: asyncio.Event | None = None,
    ) -> ContinuityVerdict:
        """Ask whether the query continues the previous turn."""
        if self.memory.is_empty:
            return ContinuityVerdict(is_continuation=False)

        titles = ", ".join(n.title for n in self.memory.notes)
        prompt = CONTINUITY_PROMPT.format(
            previous=self.memory.last_query, titles=titles, query=query
        )
        try:
            reply = await self._ask(prompt, cancel)
        except Exception as e:
            logger.warning("Continuity check failed, searching afresh: %s", e)
            return ContinuityVerdict(is_continuation=False)

        result = parse_reply(reply, ContinuityVerdict, extract_continuity_fields)
        if isinstance(result, Parsed):
            return result.record
        return ContinuityVerdict(is_continuation=False)

    # -- main loop -----------------------------------------------------------

    async def _initial_notes(
        self,
        query: str,
        notes: list[NoteWithContent] | None,
        cancel: asyncio.Event | None,
        active_path: str | None,
    ) -> list[NoteWithContent]:
        continuity = await self.check_continuity(query, cancel)
        if continuity.is_continuation:
            logger.debug("Query continues previous turn %r", self.memory.last_query)
            kept = await self.filter_relevant(query, self.memory.notes, cancel)
            if not continuity.needs_new_search and kept:
                return kept
            extra = await self._search(continuity.search_query or query, self.follow_up_limit, cancel)
            known = {(n.path, n.chunk_index) for n in kept}
            extra = [n for n in extra if (n.path, n.chunk_index) not in known]
            return kept + await self.filter_relevant(query, extra, cancel)

        if notes is None:
            notes = await self._search(query, None, cancel, active_path)
        return await self.filter_relevant(query, notes, cancel)

    async def build_context(
        self,
        query: str,
        budget: int,
        notes: list[NoteWithContent] | None = None,
        cancel: asyncio.Event | None = None,
        active_path: str | None = None,
    ) -> str:
        """
        Build context for a query, refining it with follow-up searches.

        Args:
            query: The user's question
            budget: Maximum length of the returned context
            notes: Initial search hits; searched here when omitted
            cancel: Optional event that aborts the turn when set
            active_path: Currently open document, favoured by the initial search

        Returns:
            Context no longer than ``budget``

        Raises:
            asyncio.CancelledError: If the turn is cancelled
        """
        used = await self._initial_notes(query, notes, cancel, active_path)
        context = self.assembler.build_context(query, used, budget) if used else ""

        verdict = await self.evaluate_sufficiency(query, context or NO_NOTES_MESSAGE, cancel)
        if not verdict.sufficient:
            context, used = await self._follow_up(query, verdict.follow_up_queries,
                                                  context, used, budget, cancel)

        self.memory.notes = used
        self.memory.last_query = query
        return context or NO_NOTES_MESSAGE[:budget]

    async def _follow_up(
        self,
        query: str,
        follow_ups: list[str],
        context: str,
        used: list[NoteWithContent],
        budget: int,
        cancel: asyncio.Event | None,
    ) -> tuple[str, list[NoteWithContent]]:
        asked = {query.strip().lower()}
        rounds = 0
        for follow_up in follow_ups:
            if rounds >= self.max_follow_ups:
                break
            key = follow_up.strip().lower()
            if not key or key in asked:
                continue
            asked.add(key)
            rounds += 1

            header = f"\n\n### Additional information (search: {follow_up})\n\n" if context else ""
            remaining = budget - len(context) - len(header)
            if remaining <= 0:
                logger.debug("No budget left for follow-up %r", follow_up)
                break

            hits = await self._search(follow_up, self.follow_up_limit, cancel)
            known = {(n.path, n.chunk_index) for n in used}
            hits = [n for n in hits if (n.path, n.chunk_index) not in known]
            relevant = await self.filter_relevant(follow_up, hits, cancel)
            if not relevant:
                logger.debug("Follow-up %r found nothing new", follow_up)
                continue

            context += header + self.assembler.build_context(follow_up, relevant, remaining)
            used = used + relevant
            logger.info("Follow-up %r added %d notes", follow_up, len(relevant))
        return context, used
