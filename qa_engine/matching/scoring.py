"""
Relevance Scoring

Turns fuzzy matcher output plus domain boosts into a ranked relevance
score, a confidence and a match-type label for one (query, entry) pair.

Scoring, in order:
    question match        x 15
    full-text match       x 8
    best synonym variant  x 6
    each keyword          5 exact / up to 3 fuzzy
    each tag              2 exact / up to 1.5 fuzzy
    domain-locale boost   x (1 + <=0.3)
    product boost         x (1 + <=0.5)
    question-pattern      + 2
    answer length         + 1 for 500-2000 characters
    confidence scaling    x (0.7 + 0.3 x average confidence)

Pattern and length bonuses only apply when the entry matched on something,
otherwise every question-shaped entry would clear the relevance floor.
"""

from pydantic import BaseModel, Field

from qa_engine.matching.fuzzy import (
    FuzzyMatcher,
    contains_phrase,
    normalize_text,
    windowed_fuzzy_score,
)
from qa_engine.models.faq import (
    FAQCategory,
    FAQEntry,
    FuzzyMatchResult,
    MatchType,
    SearchResult,
)


QUESTION_WEIGHT = 15.0
FULL_TEXT_WEIGHT = 8.0
SYNONYM_WEIGHT = 6.0
KEYWORD_EXACT_POINTS = 5.0
KEYWORD_FUZZY_POINTS = 3.0
TAG_EXACT_POINTS = 2.0
TAG_FUZZY_POINTS = 1.5
TERM_FUZZY_THRESHOLD = 0.8
QUESTION_PATTERN_BONUS = 2.0
ANSWER_LENGTH_BONUS = 1.0
ANSWER_LENGTH_RANGE = (500, 2000)
CONFIDENCE_FLOOR = 0.7
CONFIDENCE_SPAN = 0.3
EXACT_MATCH_MIN_SCORE = 0.9


class ScoreBreakdown(BaseModel):
    """Intermediate signals behind a relevance score."""

    question_match: FuzzyMatchResult
    full_text_match: FuzzyMatchResult
    synonym_score: float = Field(default=0.0, ge=0.0)
    keyword_points: float = Field(default=0.0, ge=0.0)
    tag_points: float = Field(default=0.0, ge=0.0)
    matched_terms: list[str] = Field(default_factory=list)

    @property
    def text_contribution(self) -> float:
        return (
            self.question_match.score * QUESTION_WEIGHT
            + self.full_text_match.score * FULL_TEXT_WEIGHT
            + self.synonym_score * SYNONYM_WEIGHT
        )

    @property
    def term_contribution(self) -> float:
        return self.keyword_points + self.tag_points

    @property
    def average_confidence(self) -> float:
        return (self.question_match.confidence + self.full_text_match.confidence) / 2

    @property
    def match_score(self) -> float:
        return max(self.question_match.score, self.full_text_match.score)


def determine_match_type(breakdown: ScoreBreakdown) -> MatchType:
    """
    Label the rule that dominated the score.

    Priority: exact question match, then keyword/tag dominance, then the
    tier of the stronger text match, then semantic.
    """
    question = breakdown.question_match
    if question.match_type == MatchType.EXACT and question.score >= EXACT_MATCH_MIN_SCORE:
        return MatchType.EXACT

    if breakdown.term_contribution > 0 and breakdown.term_contribution >= breakdown.text_contribution:
        return MatchType.KEYWORD

    full_text = breakdown.full_text_match
    if question.score * QUESTION_WEIGHT >= full_text.score * FULL_TEXT_WEIGHT:
        stronger = question
    else:
        stronger = full_text
    if stronger.score > 0:
        return stronger.match_type

    return MatchType.SEMANTIC


class RelevanceScorer:
    """Scores FAQ entries against a query."""

    def __init__(
        self,
        matcher: FuzzyMatcher,
        enable_synonym_expansion: bool = True,
    ):
        self._matcher = matcher
        self._enable_synonyms = enable_synonym_expansion

    @property
    def matcher(self) -> FuzzyMatcher:
        return self._matcher

    def _term_points(
        self,
        query_text: str,
        normalized_query: str,
        terms: tuple[str, ...],
        exact_points: float,
        fuzzy_points: float,
        matched: list[str],
    ) -> float:
        points = 0.0
        for term in terms:
            normalized_term = normalize_text(term)
            if not normalized_term:
                continue
            if contains_phrase(query_text, normalized_term):
                points += exact_points
                matched.append(term)
                continue
            if not normalized_query:
                continue
            similarity = windowed_fuzzy_score(normalized_term, normalized_query)
            if similarity > TERM_FUZZY_THRESHOLD:
                points += similarity * fuzzy_points
                matched.append(term)
        return points

    def breakdown(self, query: str, entry: FAQEntry) -> ScoreBreakdown:
        """Compute every matching signal for one entry."""
        question_match = self._matcher.comprehensive_fuzzy_match(query, entry.question)
        full_text_match = self._matcher.comprehensive_fuzzy_match(query, entry.full_text)

        synonym_score = 0.0
        if self._enable_synonyms:
            for variant in self._matcher.expand_query_with_synonyms(query):
                if variant == query:
                    result = full_text_match
                else:
                    result = self._matcher.comprehensive_fuzzy_match(variant, entry.full_text)
                synonym_score = max(synonym_score, result.score)

        query_text = normalize_text(query)
        normalized_query = self._matcher.normalize_query(query)
        matched_terms: list[str] = []
        keyword_points = self._term_points(
            query_text, normalized_query, entry.keywords,
            KEYWORD_EXACT_POINTS, KEYWORD_FUZZY_POINTS, matched_terms,
        )
        tag_points = self._term_points(
            query_text, normalized_query, entry.tags,
            TAG_EXACT_POINTS, TAG_FUZZY_POINTS, matched_terms,
        )

        for segment in question_match.matched_segments + full_text_match.matched_segments:
            if segment not in matched_terms:
                matched_terms.append(segment)

        return ScoreBreakdown(
            question_match=question_match,
            full_text_match=full_text_match,
            synonym_score=synonym_score,
            keyword_points=keyword_points,
            tag_points=tag_points,
            matched_terms=matched_terms,
        )

    def score(self, query: str, entry: FAQEntry, category: FAQCategory) -> SearchResult:
        """Score one entry; the result always has a non-negative relevance."""
        breakdown = self.breakdown(query, entry)
        raw = breakdown.text_contribution + breakdown.term_contribution
        boosts: dict[str, float] = {}

        if raw > 0:
            searchable = f"{entry.question} {entry.answer}"
            domain_boost = self._matcher.domain_locale_boost(searchable)
            product_boost = self._matcher.product_relevance_boost(query, searchable)
            raw *= 1 + domain_boost
            raw *= 1 + product_boost
            boosts["domain"] = domain_boost
            boosts["product"] = product_boost

            if (
                self._matcher.starts_with_question_pattern(query)
                and self._matcher.starts_with_question_pattern(entry.question)
            ):
                raw += QUESTION_PATTERN_BONUS
                boosts["question_pattern"] = QUESTION_PATTERN_BONUS

            low, high = ANSWER_LENGTH_RANGE
            if low <= len(entry.answer) <= high:
                raw += ANSWER_LENGTH_BONUS
                boosts["answer_length"] = ANSWER_LENGTH_BONUS

        confidence = breakdown.average_confidence
        relevance = max(0.0, raw * (CONFIDENCE_FLOOR + CONFIDENCE_SPAN * confidence))

        return SearchResult(
            entry=entry,
            category=category,
            relevance_score=relevance,
            confidence=confidence,
            match_type=determine_match_type(breakdown),
            matched_terms=breakdown.matched_terms,
            match_score=breakdown.match_score,
            boosts=boosts,
        )
