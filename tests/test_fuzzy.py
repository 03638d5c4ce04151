"""
Tests for the fuzzy matcher.

String metrics are tested as plain functions; the cascade is tested
through FuzzyMatcher with the default Canadian finance vocabulary.
"""

import pytest

from qa_engine.matching import (
    FuzzyMatcher,
    fuzzy_score,
    generate_ngrams,
    levenshtein_distance,
    ngram_similarity,
    normalize_text,
    windowed_fuzzy_score,
)
from qa_engine.matching.fuzzy import contains_phrase
from qa_engine.models.faq import MatchType


class TestStringMetrics:
    """Tests for edit distance and n-gram similarity."""

    def test_levenshtein_distance(self):
        """Classic edit distance examples."""
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0

    def test_fuzzy_score_bounds(self):
        """Similarity is 1 for equal strings and within [0, 1] otherwise."""
        assert fuzzy_score("credit", "credit") == 1.0
        assert fuzzy_score("", "") == 1.0
        assert fuzzy_score("abc", "xyz") == 0.0
        assert 0.0 < fuzzy_score("cedit", "credit") < 1.0

    def test_fuzzy_score_ignores_case(self):
        assert fuzzy_score("TFSA", "tfsa") == 1.0

    def test_fuzzy_score_single_typo(self):
        """One missing letter in a six-letter word."""
        assert fuzzy_score("cedit", "credit") == pytest.approx(1 - 1 / 6)

    def test_generate_ngrams_characters_and_words(self):
        """Character trigrams per word plus word trigrams of the text."""
        ngrams = generate_ngrams("build credit history")
        assert "bui" in ngrams
        assert "red" in ngrams
        assert "build credit history" in ngrams

    def test_generate_ngrams_skips_short_words(self):
        assert generate_ngrams("an") == set()

    def test_ngram_similarity(self):
        assert ngram_similarity("credit", "credit") == 1.0
        assert ngram_similarity("", "") == 0.0
        assert ngram_similarity("credit", "xyzzy") == 0.0

    def test_windowed_score_finds_matching_stretch(self):
        """A short query is compared with the best run of target words."""
        target = "you can build credit by paying every bill on time"
        assert windowed_fuzzy_score("build credit", target) == 1.0
        assert windowed_fuzzy_score("build credit", target) > fuzzy_score("build credit", target)

    def test_normalize_text(self):
        assert normalize_text("  What's   the TFSA?! ") == "whats the tfsa"

    def test_contains_phrase_is_word_bounded(self):
        assert contains_phrase("how to save money", "save money")
        assert not contains_phrase("unsaved money", "save")


class TestQueryNormalization:
    """Tests for interrogative stripping and stop words."""

    def test_strips_leading_pattern(self, matcher):
        assert matcher.normalize_query("How do I create a budget?") == "create budget"

    def test_strips_apostrophe_pattern(self, matcher):
        """'What's the difference between' is recognized after apostrophe removal."""
        assert matcher.normalize_query("What's the difference between TFSA and RRSP?") == "tfsa rrsp"

    def test_drops_short_and_stop_words(self, matcher):
        assert matcher.normalize_query("is my tfsa ok") == "tfsa"

    def test_may_be_empty(self, matcher):
        assert matcher.normalize_query("how do i") == ""

    def test_leading_pattern(self, matcher):
        assert matcher.leading_pattern("How can I improve my credit score?") == "how can i"
        assert matcher.leading_pattern("Credit score tips") is None


class TestSynonymsAndDomainTerms:
    """Tests for vocabulary-driven helpers."""

    def test_expansion_keeps_original_first(self, matcher):
        expanded = matcher.expand_query_with_synonyms("check my credit score")
        assert expanded[0] == "check my credit score"
        assert "check my credit rating" in expanded

    def test_expansion_is_bidirectional(self, matcher):
        """A synonym maps back to its canonical term."""
        expanded = matcher.expand_query_with_synonyms("rainy day fund")
        assert "emergency fund" in expanded

    def test_expansion_deduplicates(self, matcher):
        expanded = matcher.expand_query_with_synonyms("tfsa")
        assert len(expanded) == len(set(expanded))

    def test_no_expansion_without_terms(self, matcher):
        assert matcher.expand_query_with_synonyms("hello world") == ["hello world"]

    def test_extract_domain_terms(self, matcher):
        terms = matcher.extract_domain_terms("Is my credit rating affected by my mortgage?")
        assert "credit score" in terms
        assert "mortgage" in terms

    def test_domain_locale_boost_capped(self, matcher):
        assert matcher.domain_locale_boost("TFSA") == pytest.approx(0.1)
        assert matcher.domain_locale_boost("canada tfsa rrsp cra equifax") == pytest.approx(0.3)
        assert matcher.domain_locale_boost("nothing local here") == 0.0

    def test_domain_locale_boost_whole_words(self, matcher):
        """'td' inside another word is not an indicator."""
        assert matcher.domain_locale_boost("outdated") == 0.0

    def test_product_boost_requires_both_sides(self, matcher):
        assert matcher.product_relevance_boost("clarifi budget", "ClariFi budget tools") > 0
        assert matcher.product_relevance_boost("clarifi", "nothing here") == 0.0

    def test_product_boost_capped(self, matcher):
        text = "clarifi budget categorization upload statement alerts dashboard insights"
        assert matcher.product_relevance_boost(text, text) <= 0.5


class TestComprehensiveFuzzyMatch:
    """Tests for the tiered match cascade."""

    def test_exact_tier(self, matcher):
        result = matcher.comprehensive_fuzzy_match(
            "What's the difference between TFSA and RRSP?",
            "What's the difference between a TFSA and an RRSP?",
        )
        assert result.match_type == MatchType.EXACT
        assert result.score == 1.0
        assert result.confidence == 0.95

    def test_partial_tier(self, matcher):
        """Most query words appear in the target."""
        result = matcher.comprehensive_fuzzy_match("credit score history", "improve your credit score")
        assert result.match_type == MatchType.PARTIAL
        assert result.score == pytest.approx(2 / 3 * 0.8)
        assert result.confidence == 0.8

    def test_fuzzy_tier_on_typos(self, matcher):
        result = matcher.comprehensive_fuzzy_match("cedit scor imporvement", "credit score improvement")
        assert result.match_type == MatchType.FUZZY
        assert 0 < result.score < 0.9
        assert result.confidence == 0.7

    def test_semantic_tier(self, matcher):
        """No lexical overlap, but both sides name the same domain concept."""
        result = matcher.comprehensive_fuzzy_match("rainy day fund", "build emergency savings")
        assert result.match_type == MatchType.SEMANTIC
        assert result.score == pytest.approx(0.4)

    def test_no_match(self, matcher):
        result = matcher.comprehensive_fuzzy_match("zzqx blorf", "create a budget")
        assert result.score == 0.0
        assert result.confidence == 0.0

    def test_empty_normalized_query_never_matches(self, matcher):
        result = matcher.comprehensive_fuzzy_match("how do i", "How do I create a budget?")
        assert result.score == 0.0

    @pytest.mark.parametrize("query,target,looser", [
        ("create budget", "how do i create a budget", "crate budgett"),
        ("tfsa rrsp", "tfsa rrsp differences", "tfsa rrps"),
        ("emergency fund", "build an emergency fund", "emergncy fnd"),
    ])
    def test_exact_outscores_looser_tiers(self, matcher, query, target, looser):
        """An exact match of a pair always scores at least as high as a fuzzier one."""
        exact = matcher.comprehensive_fuzzy_match(query, target)
        fuzzy = matcher.comprehensive_fuzzy_match(looser, target)
        assert exact.match_type == MatchType.EXACT
        assert fuzzy.match_type != MatchType.EXACT
        assert exact.score >= fuzzy.score
