"""
Fuzzy Matching

String-similarity primitives for FAQ search: edit distance, n-gram
similarity, synonym expansion and domain-term extraction, combined into a
tiered match cascade.

DESIGN DECISION: Matching is a cascade, not a single metric.
Each tier trades certainty for recall:

    exact containment   -> score 1.0,              confidence 0.95
    word overlap > 60%  -> score overlap x 0.8,    confidence 0.8
    edit distance > 0.7 -> score similarity x 0.6, confidence 0.7
    n-gram Jaccard > 0.4-> score similarity x 0.5, confidence 0.6
    shared domain terms -> score shared x 0.4,     confidence 0.5

The first satisfied tier wins, so an exact match always outscores any
looser match of the same pair. Both sides of every comparison go through
the same normalization so that containment is meaningful.

Edit distance comes from rapidfuzz, which is orders of magnitude faster
than a pure-Python dynamic programming table on FAQ-sized text.
"""

import re
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein

from qa_engine.matching.vocabulary import (
    CANADIAN_INDICATORS,
    DOMAIN_BOOST_CAP,
    DOMAIN_BOOST_PER_INDICATOR,
    FINANCIAL_SYNONYMS,
    MIN_WORD_LENGTH,
    PRODUCT_BOOST_CAP,
    PRODUCT_BOOST_PER_FEATURE,
    PRODUCT_FEATURES,
    PRODUCT_NAME_BOOST,
    QUESTION_PATTERNS,
    STOP_WORDS,
)
from qa_engine.models.faq import FuzzyMatchResult, MatchType


EXACT_SCORE = 1.0
EXACT_CONFIDENCE = 0.95
PARTIAL_THRESHOLD = 0.6
PARTIAL_WEIGHT = 0.8
PARTIAL_CONFIDENCE = 0.8
FUZZY_THRESHOLD = 0.7
FUZZY_WEIGHT = 0.6
FUZZY_CONFIDENCE = 0.7
NGRAM_THRESHOLD = 0.4
NGRAM_WEIGHT = 0.5
NGRAM_CONFIDENCE = 0.6
SEMANTIC_WEIGHT = 0.4
SEMANTIC_CONFIDENCE = 0.5

_APOSTROPHES = re.compile(r"['’]")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, drop apostrophes, turn punctuation into spaces, collapse whitespace."""
    lowered = _APOSTROPHES.sub("", text.lower())
    return _WHITESPACE.sub(" ", _NON_ALNUM.sub(" ", lowered)).strip()


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character edits turning a into b."""
    return Levenshtein.distance(a, b)


def fuzzy_score(a: str, b: str) -> float:
    """Edit-distance similarity in [0, 1]; case-insensitive."""
    a, b = a.lower(), b.lower()
    max_length = max(len(a), len(b))
    if max_length == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max_length


def generate_ngrams(text: str, n: int = 3) -> set[str]:
    """
    Character n-grams of every word (typo tolerance) plus word n-grams
    of the whole text (phrase tolerance).
    """
    words = normalize_text(text).split()
    ngrams: set[str] = set()

    for word in words:
        if len(word) >= n:
            ngrams.update(word[i:i + n] for i in range(len(word) - n + 1))

    if len(words) >= n:
        ngrams.update(" ".join(words[i:i + n]) for i in range(len(words) - n + 1))

    return ngrams


def ngram_similarity(a: str, b: str, n: int = 3) -> float:
    """Jaccard index of the two n-gram sets (0 when both are empty)."""
    first = generate_ngrams(a, n)
    second = generate_ngrams(b, n)
    union = first | second
    if not union:
        return 0.0
    return len(first & second) / len(union)


def windowed_fuzzy_score(query: str, target: str) -> float:
    """
    Best edit-distance similarity of query against target or any run of
    target words whose length is within one word of the query's.

    Lets a short query be compared against the matching stretch of a long
    target instead of the whole thing.
    """
    best = fuzzy_score(query, target)
    query_len = len(query.split())
    target_words = target.split()

    for size in (query_len - 1, query_len, query_len + 1):
        if size < 1 or size >= len(target_words):
            continue
        for start in range(len(target_words) - size + 1):
            window = " ".join(target_words[start:start + size])
            best = max(best, fuzzy_score(query, window))
            if best == 1.0:
                return best

    return best


def contains_phrase(text: str, phrase: str) -> bool:
    """Whole-word containment of phrase in text (both already normalized)."""
    if not phrase:
        return False
    return f" {phrase} " in f" {text} "


def _dedupe(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


class FuzzyMatcher:
    """
    Vocabulary-aware matcher.

    Holds the synonym table, question patterns and stop words; the pure
    string metrics above are module functions.
    """

    def __init__(
        self,
        synonyms: Optional[dict[str, tuple[str, ...]]] = None,
        question_patterns: Iterable[str] = QUESTION_PATTERNS,
        stop_words: Iterable[str] = STOP_WORDS,
        product_name: str = "clarifi",
    ):
        table = synonyms if synonyms is not None else FINANCIAL_SYNONYMS
        self._synonyms: list[tuple[str, list[str]]] = [
            (normalize_text(term), _dedupe(normalize_text(s) for s in variants))
            for term, variants in table.items()
        ]
        self._question_patterns = tuple(normalize_text(p) for p in question_patterns)
        self._stop_words = frozenset(stop_words)
        self._product_name = normalize_text(product_name)

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def leading_pattern(self, text: str) -> Optional[str]:
        """The interrogative pattern text starts with, if any."""
        normalized = normalize_text(text)
        for pattern in self._question_patterns:
            if normalized == pattern or normalized.startswith(pattern + " "):
                return pattern
        return None

    def starts_with_question_pattern(self, text: str) -> bool:
        return self.leading_pattern(text) is not None

    def normalize_query(self, text: str) -> str:
        """
        Canonical form used for matching.

        Strips one leading interrogative pattern, stop words and words
        shorter than three characters. May return an empty string.
        """
        normalized = normalize_text(text)
        pattern = self.leading_pattern(normalized)
        if pattern:
            normalized = normalized[len(pattern):].strip()

        words = [
            word for word in normalized.split()
            if len(word) >= MIN_WORD_LENGTH and word not in self._stop_words
        ]
        return " ".join(words)

    # ------------------------------------------------------------------
    # Vocabulary
    # ------------------------------------------------------------------

    def expand_query_with_synonyms(self, query: str) -> list[str]:
        """
        The original query plus one variant per synonym substitution.

        Substitution runs both ways: a canonical term is replaced by each
        of its synonyms, and a synonym by its canonical term.
        """
        normalized = normalize_text(query)
        expanded = [query]

        for term, variants in self._synonyms:
            if contains_phrase(normalized, term):
                for variant in variants:
                    expanded.append(self._replace_phrase(normalized, term, variant))
            for variant in variants:
                if contains_phrase(normalized, variant):
                    expanded.append(self._replace_phrase(normalized, variant, term))

        return _dedupe(expanded)

    @staticmethod
    def _replace_phrase(text: str, old: str, new: str) -> str:
        return f" {text} ".replace(f" {old} ", f" {new} ", 1).strip()

    def extract_domain_terms(self, text: str) -> list[str]:
        """Canonical domain terms present in text, directly or via a synonym."""
        normalized = normalize_text(text)
        found = []
        for term, variants in self._synonyms:
            if contains_phrase(normalized, term) or any(
                contains_phrase(normalized, variant) for variant in variants
            ):
                found.append(term)
        return found

    def domain_locale_boost(self, text: str) -> float:
        """0.1 per Canadian indicator present, capped at 0.3."""
        words = set(normalize_text(text).split())
        hits = sum(1 for indicator in CANADIAN_INDICATORS if indicator in words)
        return min(hits * DOMAIN_BOOST_PER_INDICATOR, DOMAIN_BOOST_CAP)

    def product_relevance_boost(self, query: str, text: str) -> float:
        """
        0.15 per product feature named by both query and text, plus 0.25
        when both name the product itself; capped at 0.5.
        """
        query_words = set(normalize_text(query).split())
        text_words = set(normalize_text(text).split())

        boost = sum(
            PRODUCT_BOOST_PER_FEATURE
            for feature in PRODUCT_FEATURES
            if feature in query_words and feature in text_words
        )
        if self._product_name and self._product_name in query_words and self._product_name in text_words:
            boost += PRODUCT_NAME_BOOST

        return min(boost, PRODUCT_BOOST_CAP)

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    def comprehensive_fuzzy_match(self, query: str, target: str) -> FuzzyMatchResult:
        """Run the tiered cascade; the first satisfied tier wins."""
        normalized_query = self.normalize_query(query)
        if not normalized_query:
            return FuzzyMatchResult.no_match()
        normalized_target = self.normalize_query(target)

        # 1. Exact containment
        if contains_phrase(normalized_target, normalized_query):
            return FuzzyMatchResult(
                score=EXACT_SCORE,
                confidence=EXACT_CONFIDENCE,
                match_type=MatchType.EXACT,
                matched_segments=[normalized_query],
            )

        # 2. Partial word overlap
        query_words = normalized_query.split()
        target_words = set(normalized_target.split())
        matched = [
            word for word in query_words
            if any(word in target_word or target_word in word for target_word in target_words)
        ]
        overlap = len(matched) / len(query_words)
        if overlap > PARTIAL_THRESHOLD:
            return FuzzyMatchResult(
                score=overlap * PARTIAL_WEIGHT,
                confidence=PARTIAL_CONFIDENCE,
                match_type=MatchType.PARTIAL,
                matched_segments=matched,
            )

        # 3. Edit distance
        similarity = windowed_fuzzy_score(normalized_query, normalized_target)
        if similarity > FUZZY_THRESHOLD:
            return FuzzyMatchResult(
                score=similarity * FUZZY_WEIGHT,
                confidence=FUZZY_CONFIDENCE,
                match_type=MatchType.FUZZY,
                matched_segments=[normalized_query],
            )

        # 4. N-gram similarity
        similarity = ngram_similarity(normalized_query, normalized_target)
        if similarity > NGRAM_THRESHOLD:
            return FuzzyMatchResult(
                score=similarity * NGRAM_WEIGHT,
                confidence=NGRAM_CONFIDENCE,
                match_type=MatchType.NGRAM,
            )

        # 5. Shared domain terms
        query_terms = self.extract_domain_terms(normalized_query)
        target_terms = set(self.extract_domain_terms(normalized_target))
        shared = [term for term in query_terms if term in target_terms]
        if shared:
            return FuzzyMatchResult(
                score=len(shared) / len(query_terms) * SEMANTIC_WEIGHT,
                confidence=SEMANTIC_CONFIDENCE,
                match_type=MatchType.SEMANTIC,
                matched_segments=shared,
            )

        return FuzzyMatchResult.no_match()
