"""Tests for query processing and lexical matching."""

from recall.nlp import (
    MatchScore,
    expand_term,
    match_score,
    process_query,
    stem_word,
)


class TestStemWord:

    def test_plurals(self):
        assert stem_word("roofs") == "roof"
        assert stem_word("stories") == "story"

    def test_verb_endings(self):
        assert stem_word("running") == "run"
        assert stem_word("baking") == "bake"
        assert stem_word("planned") == "plan"

    def test_short_words_untouched(self):
        assert stem_word("car") == "car"

    def test_irregular_forms(self):
        assert stem_word("wrote") == "write"
        assert stem_word("studies") == "study"


class TestExpandTerm:

    def test_synonyms_added(self):
        expanded = expand_term("car")
        assert expanded[0] == "car"
        assert "vehicle" in expanded

    def test_stem_added_once(self):
        expanded = expand_term("problems")
        assert expanded[:2] == ["problems", "problem"]
        assert "issue" in expanded
        assert len(expanded) == len(set(expanded))


# -----------------------------------------------------------------------------

class TestProcessQuery:

    def test_stopwords_removed(self):
        processed = process_query("What is the status of the roof?")
        assert "the" not in processed.tokens
        assert "status" in processed.tokens or "statu" in processed.tokens
        assert "roof" in processed.tokens

    def test_negations_preserved(self):
        processed = process_query("notes not about gardens")
        assert "not" in processed.tokens

    def test_quoted_phrase_kept_whole(self):
        processed = process_query('meeting about "budget review" today')
        assert processed.phrases == ["budget review"]
        assert "budget review" in processed.tokens
        assert "budget review" in processed.expanded_tokens

    def test_original_is_trimmed(self):
        assert process_query("  roof repair  ").original == "roof repair"

    def test_empty_query(self):
        processed = process_query("   ")
        assert processed.original == ""
        assert processed.tokens == []

    def test_keywords_exclude_short_and_phrases(self):
        processed = process_query('fix "leaky tap" now')
        assert "leaky tap" not in processed.keywords
        assert all(len(k) > 3 for k in processed.keywords)


# -----------------------------------------------------------------------------

class TestMatchScore:

    def test_weights(self):
        assert MatchScore(phrases=1, whole_words=1, partials=1).weighted == 6

    def test_counts_hits(self):
        text = "The roof leaks. Roofing quotes arrived for the roof."
        score = match_score(text, ["roof", "quote"], ["roof leaks"])
        assert score.phrases == 1
        assert score.whole_words == 2
        # "quote" only appears inside "quotes"
        assert score.partials == 1

    def test_no_hits(self):
        assert match_score("nothing here", ["roof"]).weighted == 0
