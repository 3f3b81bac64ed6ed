"""
Query processing: tokenizing, stemming and synonym expansion.

The expanded terms feed the title and body boosts at search time and
the excerpt scoring in the context assembler.
"""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


STOPWORDS = frozenset("""
a an and are as at be by for from has he in is it its of on that the to was were
will with am been being do does did doing i me my myself we our ours ourselves
you your yours yourself yourselves him his himself she her hers herself itself
they them their theirs themselves what which who whom this these those have had
having would should could ought im youre hes shes theyre ive youve weve theyve
id youd hed shed wed theyd ill youll hell shell well theyll isnt arent wasnt
werent hasnt havent hadnt doesnt dont didnt wont wouldnt shouldnt couldnt cant
cannot mustnt lets thats whos whats heres theres whens wheres whys hows because
why how when where then here there all any both each few more most other some
such no nor not only own same so than too very s t can just d ll m o re ve y ain
about above after again against below between but during into once or out over
through under until up while
""".split())

# Negations and qualifiers change the meaning of a query
PRESERVED_WORDS = frozenset("""
not no never without except but however although despite though unless unlike
cannot none neither nor
""".split())

SUFFIXES = sorted(
    ["ing", "ed", "s", "es", "ies", "ly", "er", "est", "al", "ial", "ical",
     "ful", "able", "ible", "ness", "ity", "ment", "ation", "ition", "tion"],
    key=len,
    reverse=True,
)

SYNONYMS: dict[str, list[str]] = {
    "car": ["vehicle", "automobile", "transportation"],
    "house": ["home", "residence", "building", "property"],
    "person": ["individual", "human", "people"],
    "important": ["critical", "essential", "vital", "key"],
    "large": ["big", "huge", "massive", "sizeable"],
    "small": ["tiny", "little", "miniature", "compact"],
    "create": ["make", "build", "develop", "produce"],
    "find": ["locate", "discover", "search", "uncover"],
    "help": ["assist", "aid", "support", "guide"],
    "problem": ["issue", "challenge", "difficulty", "obstacle"],
    "solution": ["answer", "resolution", "fix", "remedy"],
    "idea": ["concept", "thought", "notion", "plan"],
    "task": ["job", "assignment", "project", "work"],
    "feature": ["functionality", "capability", "aspect", "element"],
    "change": ["modify", "alter", "update", "adjust"],
    "discuss": ["conversation", "talk", "chat", "dialogue", "mentioned", "spoke"],
    "understand": ["comprehend", "grasp", "realize", "know", "perceive"],
    "write": ["compose", "author", "document", "note", "record", "type"],
    "think": ["consider", "believe", "ponder", "contemplate", "reflect"],
    "research": ["investigate", "study", "analyze", "examine", "explore"],
    "learn": ["discover", "understand", "study", "grasp", "master"],
    "address": ["location", "place", "handle", "tackle", "deal with"],
    "business": ["company", "organization", "firm", "enterprise", "venture"],
}

# Irregular forms the suffix stripper gets wrong
_IRREGULAR = {
    "analyses": "analysis", "analysis": "analysis",
    "theses": "thesis", "thesis": "thesis",
    "crises": "crisis", "crisis": "crisis",
    "business": "business", "businesses": "business",
    "understood": "understand", "understanding": "understand",
    "wrote": "write", "written": "write", "writing": "write", "writ": "write",
    "thought": "think", "thinking": "think",
    "brought": "bring", "bringing": "bring",
    "stud": "study", "studied": "study", "studying": "study", "studies": "study",
    "learning": "learn", "learned": "learn",
}

_STEM_PREFIXES = ("process", "discuss", "research")
_DOUBLE_CONSONANT = re.compile(r'([bcdfghjklmnpqrstvwxz])\1$')
_CVC = re.compile(r'[^aeiou][aeiou][^aeiouwxy]$')
_PHRASE_RE = re.compile(r'"([^"]*)"')
_PUNCT_RE = re.compile(r'[^\w\s]')

PHRASE_WEIGHT = 3
WHOLE_WORD_WEIGHT = 2
PARTIAL_WEIGHT = 1


def _strip_verb_ending(base: str) -> str:
    """Undo -ing/-ed: 'running' -> 'run', 'baking' -> 'bake'."""
    if len(base) >= 3 and _DOUBLE_CONSONANT.search(base):
        return base[:-1]
    if _CVC.search(base):
        return base + "e"
    return base


def stem_word(word: str) -> str:
    """Reduce a word to a rough root form."""
    w = word.lower()
    if len(w) <= 3:
        return w
    for prefix in _STEM_PREFIXES:
        if w.startswith(prefix):
            return prefix
    if w in _IRREGULAR:
        return _IRREGULAR[w]
    if w.startswith(("address", "express", "progress")):
        return re.sub(r'e[sd]$|ing$', '', w)

    if w.endswith("ies") and len(w) > 4:
        return w[:-3] + "y"
    if w.endswith("es") and len(w) > 3:
        return w[:-2]
    if w.endswith("s") and not w.endswith("ss"):
        return w[:-1]
    if w.endswith("ing") and len(w) > 5:
        return _strip_verb_ending(w[:-3])
    if w.endswith("ed") and len(w) > 4:
        return _strip_verb_ending(w[:-2])

    for suffix in SUFFIXES:
        if w.endswith(suffix) and len(w) - len(suffix) >= 3:
            return w[:-len(suffix)]
    return w


def expand_term(term: str) -> list[str]:
    """Return the term, its stem and any synonyms, without duplicates."""
    lower = term.lower()
    stemmed = stem_word(lower)
    expanded = [term]
    if stemmed != lower:
        expanded.append(stemmed)
    expanded.extend(SYNONYMS.get(stemmed) or SYNONYMS.get(lower) or [])
    return list(dict.fromkeys(expanded))


@dataclass
class ProcessedQuery:
    """
    A user query broken down for lexical matching.

    Attributes:
        original: The trimmed query as typed
        processed: Stemmed tokens joined by spaces
        tokens: Stemmed tokens (quoted phrases kept whole)
        expanded_tokens: Tokens plus stems and synonyms, deduplicated
        phrases: Quoted phrases, verbatim
    """
    original: str
    processed: str = ""
    tokens: list[str] = field(default_factory=list)
    expanded_tokens: list[str] = field(default_factory=list)
    phrases: list[str] = field(default_factory=list)

    @property
    def keywords(self) -> list[str]:
        """Single-word expanded terms longer than three characters."""
        return [t for t in self.expanded_tokens if " " not in t and len(t) > 3]


def process_query(query: str) -> ProcessedQuery:
    """Tokenize, drop stopwords, stem and expand a query."""
    original = query.strip()
    phrases: list[str] = []

    def _hold_phrase(match: re.Match) -> str:
        phrases.append(match.group(1))
        return f" __phrase{len(phrases) - 1}__ "

    text = _PHRASE_RE.sub(_hold_phrase, original.lower())
    raw_tokens = [
        t for t in _PUNCT_RE.sub("", text).split()
        if len(t) >= 2 and (t not in STOPWORDS or t in PRESERVED_WORDS)
    ]

    tokens = []
    for token in raw_tokens:
        if token.startswith("__phrase") and token.endswith("__"):
            tokens.append(phrases[int(token[8:-2])])
        elif token in PRESERVED_WORDS:
            tokens.append(token)
        else:
            tokens.append(stem_word(token))

    expanded: list[str] = []
    for token in tokens:
        if " " in token:
            expanded.append(token)
        else:
            expanded.extend(expand_term(token))
    expanded = list(dict.fromkeys(t for t in expanded if t))

    logger.debug("Query %r -> tokens %s -> expanded %s", original, tokens, expanded)
    return ProcessedQuery(
        original=original,
        processed=" ".join(tokens),
        tokens=tokens,
        expanded_tokens=expanded,
        phrases=[p for p in phrases if p.strip()],
    )


@dataclass
class MatchScore:
    """Lexical hits of a query inside a span of text."""
    phrases: int = 0
    whole_words: int = 0
    partials: int = 0

    @property
    def weighted(self) -> int:
        return (self.phrases * PHRASE_WEIGHT
                + self.whole_words * WHOLE_WORD_WEIGHT
                + self.partials * PARTIAL_WEIGHT)


def word_pattern(term: str) -> re.Pattern:
    """Case-insensitive whole-word pattern for a term."""
    return re.compile(r'\b' + re.escape(term) + r'\b', re.IGNORECASE)


def match_score(text: str, terms: list[str], phrases: list[str] = ()) -> MatchScore:
    """
    Count phrase, whole-word and partial hits of query terms in text.

    Whole-word hits are counted per occurrence; a term that only occurs
    inside longer words counts once as a partial hit.
    """
    lower = text.lower()
    score = MatchScore()
    for phrase in phrases:
        if phrase and phrase.lower() in lower:
            score.phrases += 1
    for term in terms:
        t = term.lower()
        if not t:
            continue
        hits = len(word_pattern(t).findall(text))
        if hits:
            score.whole_words += hits
        elif t in lower:
            score.partials += 1
    return score
