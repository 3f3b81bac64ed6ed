"""
Tolerant parsing of structured replies from a language model.

Models asked for JSON often wrap it in code fences, prefix it with a
label, or produce something almost-JSON. ``parse_reply`` tries an
ordered list of extraction strategies and validates every candidate
against a pydantic model; the first candidate that validates wins.
"""

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r'```(?:json|JSON)?\s*\n?(.*?)```', re.DOTALL)


# -----------------------------------------------------------------------------
# Reply schemas
# -----------------------------------------------------------------------------

class SufficiencyVerdict(BaseModel):
    """Whether assembled context answers the query, and what to search next."""
    sufficient: bool
    follow_up_queries: list[str] = Field(default_factory=list)

    @field_validator("follow_up_queries")
    @classmethod
    def _clean_queries(cls, value: list[str]) -> list[str]:
        seen = []
        for q in value:
            q = q.strip()
            if q and q.lower() not in (s.lower() for s in seen):
                seen.append(q)
        return seen[:2]


class RelevanceVerdict(BaseModel):
    """1-based indices of the candidate notes judged relevant."""
    relevant: list[int]


class ContinuityVerdict(BaseModel):
    """Whether a query continues the previous turn."""
    is_continuation: bool
    needs_new_search: bool = False
    search_query: str = ""


# -----------------------------------------------------------------------------
# Parse results
# -----------------------------------------------------------------------------

@dataclass
class Parsed(Generic[T]):
    """A reply that yielded a valid record."""
    record: T
    strategy: str


@dataclass
class Unparseable:
    """A reply no strategy could turn into a valid record."""
    raw: str
    reason: str


ParseResult = Parsed | Unparseable
FieldExtractor = Callable[[str], dict[str, Any] | None]


def _strict(text: str) -> Any:
    return json.loads(text)


def _fenced(text: str) -> Any:
    match = _FENCE_RE.search(text)
    if not match:
        return None
    return json.loads(match.group(1).strip())


def _braced(text: str) -> Any:
    """Drop anything before the first brace and after the last."""
    start, end = text.find("{"), text.rfind("}")
    if start < 0 or end <= start:
        return None
    return json.loads(text[start:end + 1])


_STRATEGIES: list[tuple[str, Callable[[str], Any]]] = [
    ("strict", _strict),
    ("fenced", _fenced),
    ("braced", _braced),
]


def parse_reply(text: str, model: type[T], extract_fields: FieldExtractor | None = None) -> ParseResult:
    """
    Parse a model reply into ``model``.

    Strategies, in order: strict JSON, JSON inside a code fence, the
    outermost brace-delimited span, then ``extract_fields`` (a regex
    extractor supplied by the caller). Candidates that decode but do not
    validate fall through to the next strategy.
    """
    if not text or not text.strip():
        return Unparseable(raw=text or "", reason="empty reply")

    stripped = text.strip()
    reasons = []
    strategies = list(_STRATEGIES)
    if extract_fields is not None:
        strategies.append(("fields", extract_fields))

    for name, strategy in strategies:
        try:
            candidate = strategy(stripped)
        except (json.JSONDecodeError, ValueError) as e:
            reasons.append(f"{name}: {e}")
            continue
        if candidate is None:
            continue
        try:
            record = model.model_validate(candidate)
        except ValidationError as e:
            reasons.append(f"{name}: {e.error_count()} validation errors")
            continue
        if name != "strict":
            logger.debug("Parsed %s reply with %s strategy", model.__name__, name)
        return Parsed(record=record, strategy=name)

    logger.warning("Could not parse %s from reply: %s", model.__name__, stripped[:200])
    return Unparseable(raw=text, reason="; ".join(reasons) or "no structure found")


# -----------------------------------------------------------------------------
# Regex field extractors
# -----------------------------------------------------------------------------

_BOOL_TEMPLATE = r'["\']?{key}["\']?\s*[:=]\s*["\']?(true|false|yes|no)\b'
_QUOTED_RE = re.compile(r'"([^"\n]{3,})"')
_FOLLOW_UP_KEY_RE = re.compile(
    r'follow[_ -]?up[_ -]?quer(?:y|ies)["\']?\s*[:=]?', re.IGNORECASE
)
_FOLLOW_UP_LIST_RE = re.compile(
    r'follow[_ -]?up[_ -]?quer(?:y|ies)["\']?\s*[:=]\s*\[(.*?)\]', re.IGNORECASE | re.DOTALL
)


def _find_bool(key: str, text: str) -> bool | None:
    match = re.search(_BOOL_TEMPLATE.format(key=key), text, re.IGNORECASE)
    if not match:
        return None
    return match.group(1).lower() in ("true", "yes")


def extract_sufficiency_fields(text: str) -> dict[str, Any] | None:
    """Pull the sufficiency flag and any quoted follow-up queries out of prose."""
    sufficient = _find_bool("sufficient", text)
    if sufficient is None:
        return None
    queries = []
    listed = _FOLLOW_UP_LIST_RE.search(text)
    if listed:
        queries = _QUOTED_RE.findall(listed.group(1))
    else:
        key = _FOLLOW_UP_KEY_RE.search(text)
        if key:
            queries = [
                q for q in _QUOTED_RE.findall(text[key.end():])
                if not re.fullmatch(r'\s*(true|false)\s*', q, re.IGNORECASE)
            ]
    return {"sufficient": sufficient, "follow_up_queries": queries}


def extract_relevance_fields(text: str) -> dict[str, Any] | None:
    """Pull a list of relevant indices out of prose like ``relevant: [1, 3]``."""
    match = re.search(r'relevant["\']?\s*[:=]\s*\[([\d,\s]*)\]', text, re.IGNORECASE)
    if not match:
        return None
    return {"relevant": [int(n) for n in re.findall(r'\d+', match.group(1))]}


def extract_continuity_fields(text: str) -> dict[str, Any] | None:
    is_continuation = _find_bool("is_continuation", text)
    if is_continuation is None:
        return None
    needs_new_search = _find_bool("needs_new_search", text) or False
    query = re.search(r'search_query["\']?\s*[:=]\s*"([^"]*)"', text)
    return {
        "is_continuation": is_continuation,
        "needs_new_search": needs_new_search,
        "search_query": query.group(1) if query else "",
    }
