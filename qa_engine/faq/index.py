"""
FAQ Index

Holds the corpus and answers search, related-question and autocomplete
requests using the fuzzy matcher and relevance scorer.

Search:
1. Queries shorter than the minimum length return nothing
2. Every in-scope entry is scored
3. Entries below the relevance floor are dropped
4. The rest are sorted by relevance x confidence, descending; ties keep
   corpus order
5. The list is cut to the configured top-N

The index also keeps a short history of recent queries (for suggestions)
and running search statistics. History is persisted best-effort.
"""

import json
import time
from collections import Counter
from typing import Any, Optional

import structlog

from qa_engine.background import BackgroundTasks
from qa_engine.config import SearchSettings
from qa_engine.matching import RelevanceScorer, normalize_text
from qa_engine.models.faq import FAQCategory, FAQCorpus, FAQEntry, SearchResult
from qa_engine.resilience.errors import SearchError
from qa_engine.services.storage import KeyValueStore, StorageError


logger = structlog.get_logger(__name__)

HISTORY_STORAGE_KEY = "qa_search_history"


class FAQIndex:
    """In-memory index over one corpus version."""

    def __init__(
        self,
        corpus: FAQCorpus,
        scorer: RelevanceScorer,
        settings: Optional[SearchSettings] = None,
        store: Optional[KeyValueStore] = None,
        background: Optional[BackgroundTasks] = None,
    ):
        self._corpus = corpus
        self._scorer = scorer
        self._settings = settings or SearchSettings()
        self._store = store
        self._background = background

        self._entries: list[tuple[FAQEntry, FAQCategory]] = []
        self._by_id: dict[str, tuple[FAQEntry, FAQCategory]] = {}
        self._categories: dict[str, FAQCategory] = {}
        for category in corpus.categories:
            self._categories[category.id] = category
            for entry in category.entries:
                self._entries.append((entry, category))
                self._by_id[entry.id] = (entry, category)

        self._history: list[str] = []
        self._search_count = 0
        self._result_total = 0
        self._time_total_ms = 0.0
        self._query_counts: Counter[str] = Counter()
        self._match_type_counts: Counter[str] = Counter()

    @property
    def version(self) -> str:
        return self._corpus.version

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_entry(self, faq_id: str) -> Optional[FAQEntry]:
        found = self._by_id.get(faq_id)
        return found[0] if found else None

    def get_category(self, category_id: str) -> Optional[FAQCategory]:
        return self._categories.get(category_id)

    def categories(self) -> list[FAQCategory]:
        """Categories in display order."""
        return sorted(self._categories.values(), key=lambda category: category.order)

    def entries_in_category(self, category_id: str) -> list[FAQEntry]:
        category = self._categories.get(category_id)
        return list(category.entries) if category else []

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query: str, category_filter: Optional[str] = None) -> list[SearchResult]:
        """
        Ranked entries for query.

        Raises:
            SearchError: If scoring fails
        """
        query = query.strip()
        if len(query) < self._settings.min_query_length:
            return []

        started = time.perf_counter()
        scope = [
            (entry, category) for entry, category in self._entries
            if category_filter is None or category.id == category_filter
        ]

        try:
            scored = [self._scorer.score(query, entry, category) for entry, category in scope]
        except Exception as e:
            raise SearchError(f"Scoring failed: {e}", context={"query": query[:100]})

        kept = [result for result in scored if result.relevance_score >= self._settings.min_score]
        # sorted() is stable, so equal scores keep corpus order
        ranked = sorted(kept, key=lambda result: result.rank_score, reverse=True)
        results = ranked[: self._settings.max_results]

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._record_search(query, results, elapsed_ms)
        logger.debug(
            "faq_search",
            query=query[:100],
            category=category_filter,
            results=len(results),
            top_faq=results[0].entry.id if results else None,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return results

    def top_match_score(self, results: list[SearchResult]) -> float:
        """Match score of the best result, 0 when there are none."""
        return results[0].match_score if results else 0.0

    # ------------------------------------------------------------------
    # Related questions and suggestions
    # ------------------------------------------------------------------

    def get_related(self, faq_id: str, limit: Optional[int] = None) -> list[FAQEntry]:
        """Explicitly related entries first, then the rest of the category."""
        limit = limit or self._settings.related_limit
        found = self._by_id.get(faq_id)
        if found is None:
            return []
        entry, category = found

        related: list[FAQEntry] = []
        seen = {faq_id}
        for related_id in entry.related_questions:
            candidate = self.get_entry(related_id)
            if candidate is not None and candidate.id not in seen:
                related.append(candidate)
                seen.add(candidate.id)

        for candidate in category.entries:
            if candidate.id not in seen:
                related.append(candidate)
                seen.add(candidate.id)

        return related[:limit]

    def suggest(self, partial_query: str, limit: Optional[int] = None) -> list[str]:
        """
        Autocomplete suggestions: matching questions, then keywords, then
        recent queries.
        """
        limit = limit or self._settings.suggestion_limit
        needle = normalize_text(partial_query)
        if not needle:
            return []

        suggestions: list[str] = []
        seen: set[str] = set()

        def add(text: str) -> None:
            folded = text.lower()
            if folded not in seen:
                seen.add(folded)
                suggestions.append(text)

        for entry, _ in self._entries:
            if needle in normalize_text(entry.question):
                add(entry.question)
        for entry, _ in self._entries:
            for keyword in entry.keywords:
                if needle in normalize_text(keyword):
                    add(keyword)
        for past_query in self._history:
            if needle in normalize_text(past_query):
                add(past_query)

        return suggestions[:limit]

    # ------------------------------------------------------------------
    # History and statistics
    # ------------------------------------------------------------------

    def _record_search(self, query: str, results: list[SearchResult], elapsed_ms: float) -> None:
        self._search_count += 1
        self._result_total += len(results)
        self._time_total_ms += elapsed_ms
        self._query_counts[normalize_text(query)] += 1
        if results:
            self._match_type_counts[results[0].match_type.value] += 1

        if self._settings.history_limit:
            folded = query.lower()
            self._history = [past for past in self._history if past.lower() != folded]
            self._history.insert(0, query)
            del self._history[self._settings.history_limit:]
            if self._store is not None and self._background is not None:
                self._background.spawn(self.save_history(), name="history_save")

    def search_history(self) -> list[str]:
        """Recent queries, most recent first."""
        return list(self._history)

    def clear_history(self) -> None:
        self._history = []
        if self._store is not None and self._background is not None:
            self._background.spawn(self.save_history(), name="history_save")

    def search_statistics(self) -> dict[str, Any]:
        return {
            "corpus_version": self._corpus.version,
            "entries": len(self._entries),
            "total_searches": self._search_count,
            "avg_results": self._result_total / self._search_count if self._search_count else 0.0,
            "avg_search_time_ms": self._time_total_ms / self._search_count if self._search_count else 0.0,
            "top_queries": self._query_counts.most_common(10),
            "match_types": dict(self._match_type_counts),
        }

    async def save_history(self) -> None:
        if self._store is None:
            return
        try:
            await self._store.set(HISTORY_STORAGE_KEY, json.dumps(self._history))
        except StorageError as e:
            logger.warning("search_history_persist_failed", error=str(e))

    async def load_history(self) -> None:
        """Restore persisted history. Corrupted state is treated as absent."""
        if self._store is None:
            return
        try:
            raw = await self._store.get(HISTORY_STORAGE_KEY)
        except StorageError as e:
            logger.warning("search_history_load_failed", error=str(e))
            return
        if not raw:
            return

        try:
            history = json.loads(raw)
        except json.JSONDecodeError:
            history = None
        if not isinstance(history, list) or not all(isinstance(item, str) for item in history):
            logger.warning("search_history_corrupted")
            return
        self._history = history[: self._settings.history_limit]
