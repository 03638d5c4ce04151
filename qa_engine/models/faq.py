"""
FAQ Data Models

These models describe the curated FAQ corpus and the results of searching it.

DESIGN DECISION: Corpus models are frozen.
The corpus is an external content artifact loaded once at startup.
Nothing in the engine is allowed to edit an entry in place; a new
corpus version means a new load.
"""

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MatchType(str, Enum):
    """
    How a query matched an FAQ entry.

    The fuzzy matcher reports exact/partial/fuzzy/ngram/semantic.
    KEYWORD is only produced by the relevance scorer when keyword and
    tag hits dominate the score.
    """
    EXACT = "exact"
    KEYWORD = "keyword"
    PARTIAL = "partial"
    FUZZY = "fuzzy"
    NGRAM = "ngram"
    SEMANTIC = "semantic"


class FAQEntry(BaseModel):
    """A single question/answer unit."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Stable identifier, referenced by related_questions"
    )
    question: str = Field(
        ...,
        min_length=1,
        description="Canonical question text"
    )
    answer: str = Field(
        ...,
        min_length=1,
        description="Answer shown to the user"
    )
    keywords: tuple[str, ...] = Field(
        default=(),
        description="Search keywords, weighted heavily"
    )
    tags: tuple[str, ...] = Field(
        default=(),
        description="Loose topical tags, weighted lightly"
    )
    category_id: str = Field(
        default="",
        description="Owning category (filled in by the corpus loader)"
    )
    related_questions: tuple[str, ...] = Field(
        default=(),
        description="IDs of explicitly related entries"
    )
    last_updated: Optional[date] = None

    @field_validator('keywords', 'tags')
    @classmethod
    def lowercase_terms(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Keywords and tags are compared case-insensitively."""
        return tuple(term.strip().lower() for term in v if term.strip())

    @property
    def full_text(self) -> str:
        """Question, answer, keywords and tags as one searchable string."""
        return " ".join([self.question, self.answer, *self.keywords, *self.tags])


class FAQCategory(BaseModel):
    """A titled group of FAQ entries."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    order: int = Field(
        default=0,
        description="Display order (ascending)"
    )
    entries: tuple[FAQEntry, ...] = ()


class FAQCorpus(BaseModel):
    """
    The versioned FAQ document.

    Loaded once at startup; see faq/corpus.py.
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field(..., min_length=1)
    categories: tuple[FAQCategory, ...] = ()

    @property
    def entry_count(self) -> int:
        return sum(len(category.entries) for category in self.categories)


class FuzzyMatchResult(BaseModel):
    """Outcome of one tiered fuzzy comparison."""

    score: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    match_type: MatchType
    matched_segments: list[str] = Field(default_factory=list)

    @classmethod
    def no_match(cls) -> "FuzzyMatchResult":
        return cls(score=0.0, confidence=0.0, match_type=MatchType.SEMANTIC)


class SearchResult(BaseModel):
    """
    One ranked FAQ hit for a query.

    Created per query and never persisted.
    """

    entry: FAQEntry
    category: FAQCategory
    relevance_score: float = Field(
        ...,
        ge=0.0,
        description="Weighted sum of all matching signals (unbounded)"
    )
    confidence: float = Field(
        ...,
        ge=0.0,
        le=1.0,
        description="Average confidence of the text match tiers"
    )
    match_type: MatchType
    matched_terms: list[str] = Field(default_factory=list)
    match_score: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Best text tier score, compared against the escalation threshold"
    )
    boosts: dict[str, float] = Field(
        default_factory=dict,
        description="Multiplicative and additive boosts that were applied"
    )

    @property
    def rank_score(self) -> float:
        """Sort key used by the index."""
        return self.relevance_score * self.confidence
