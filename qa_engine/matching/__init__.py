"""Fuzzy matching and relevance scoring."""

from qa_engine.matching.fuzzy import (
    FuzzyMatcher,
    fuzzy_score,
    generate_ngrams,
    levenshtein_distance,
    ngram_similarity,
    normalize_text,
    windowed_fuzzy_score,
)
from qa_engine.matching.scoring import (
    RelevanceScorer,
    ScoreBreakdown,
    determine_match_type,
)

__all__ = [
    "FuzzyMatcher",
    "RelevanceScorer",
    "ScoreBreakdown",
    "determine_match_type",
    "fuzzy_score",
    "generate_ngrams",
    "levenshtein_distance",
    "ngram_similarity",
    "normalize_text",
    "windowed_fuzzy_score",
]
