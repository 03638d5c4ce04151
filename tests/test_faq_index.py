"""
Tests for corpus loading and the FAQ index.
"""

import json

import pytest

from conftest import FailingStore, run
from qa_engine.background import BackgroundTasks
from qa_engine.config import SearchSettings
from qa_engine.faq import CorpusLoadError, FAQIndex, load_corpus, parse_corpus, sorted_categories
from qa_engine.faq.index import HISTORY_STORAGE_KEY
from qa_engine.matching import FuzzyMatcher, RelevanceScorer
from qa_engine.models.faq import MatchType, SearchResult
from qa_engine.resilience import SearchError
from qa_engine.services.storage import InMemoryKeyValueStore


def corpus_document(**overrides) -> dict:
    document = {
        "version": "test-1",
        "categories": [
            {
                "id": "budgeting",
                "title": "Budgeting",
                "order": 2,
                "entries": [
                    {"id": "create-budget", "question": "How do I create a budget?", "answer": "Start with income."},
                    {"id": "reduce-spending", "question": "How can I reduce my spending?", "answer": "Track it."},
                ],
            },
            {
                "id": "credit",
                "title": "Credit",
                "order": 1,
                "entries": [
                    {
                        "id": "credit-score",
                        "question": "How can I improve my credit score?",
                        "answer": "Pay on time.",
                        "related_questions": ["create-budget"],
                    },
                ],
            },
        ],
    }
    document.update(overrides)
    return document


class TestCorpusLoading:
    """Tests for parse_corpus and load_corpus."""

    def test_shipped_corpus_loads(self, corpus):
        assert corpus.version
        assert corpus.entry_count == 14
        assert all(entry.category_id == category.id for category in corpus.categories for entry in category.entries)

    def test_links_category_ids(self):
        corpus = parse_corpus(corpus_document())
        entry = corpus.categories[0].entries[0]
        assert entry.category_id == "budgeting"

    def test_accepts_json_text(self):
        corpus = parse_corpus(json.dumps(corpus_document()))
        assert corpus.entry_count == 3

    def test_rejects_duplicate_ids(self):
        document = corpus_document()
        document["categories"][1]["entries"][0]["id"] = "create-budget"
        with pytest.raises(CorpusLoadError):
            parse_corpus(document)

    def test_rejects_malformed_document(self):
        with pytest.raises(CorpusLoadError):
            parse_corpus({"categories": "nope"})

    def test_missing_file(self, tmp_path):
        with pytest.raises(CorpusLoadError):
            load_corpus(tmp_path / "missing.json")

    def test_sorted_categories(self):
        corpus = parse_corpus(corpus_document())
        assert [category.id for category in sorted_categories(corpus)] == ["credit", "budgeting"]


class TestSearch:
    """Tests for FAQIndex.search against the shipped corpus."""

    def test_exact_question(self, index):
        """The TFSA/RRSP comparison matches its entry exactly."""
        results = index.search("What's the difference between TFSA and RRSP?")
        top = results[0]
        assert top.entry.id == "tfsa-vs-rrsp"
        assert top.match_type == MatchType.EXACT
        assert top.match_score >= 0.9

    def test_typo_query(self, index):
        """A misspelled query still finds the credit score entry through a fuzzy tier."""
        results = index.search("cedit scor imporvement")
        top = results[0]
        assert top.entry.id == "credit-score-improvement"
        assert top.match_type in (MatchType.FUZZY, MatchType.NGRAM, MatchType.PARTIAL)
        assert 0 < top.match_score < 0.9

    def test_sorted_by_rank_score(self, index):
        results = index.search("credit score")
        ranks = [result.rank_score for result in results]
        assert ranks == sorted(ranks, reverse=True)

    def test_relevance_floor(self, index):
        for result in index.search("bank fees"):
            assert result.relevance_score >= 0.1

    def test_truncated_to_max_results(self, corpus, scorer):
        index = FAQIndex(corpus, scorer, SearchSettings(max_results=2))
        assert len(index.search("credit")) <= 2

    def test_short_query_returns_nothing(self, index):
        assert index.search("a") == []
        assert index.search("   ") == []

    def test_nonsense_returns_nothing(self, index):
        assert index.search("zzqx blorf wumpus") == []

    def test_category_filter(self, index):
        results = index.search("credit score", category_filter="credit")
        assert results
        assert all(result.category.id == "credit" for result in results)

    def test_ties_keep_corpus_order(self, matcher):
        """Entries with identical scores come back in corpus order."""
        corpus = parse_corpus({
            "version": "ties",
            "categories": [{
                "id": "c",
                "title": "C",
                "entries": [
                    {"id": "first", "question": "Budget basics", "answer": "Same answer."},
                    {"id": "second", "question": "Budget basics", "answer": "Same answer."},
                ],
            }],
        })
        index = FAQIndex(corpus, RelevanceScorer(matcher))
        assert [result.entry.id for result in index.search("budget basics")] == ["first", "second"]

    def test_relevance_floor_is_inclusive(self):
        """A score exactly at min_score is kept; anything below it is not."""
        corpus = parse_corpus(corpus_document())
        scores = {"create-budget": 0.1, "reduce-spending": 0.0999, "credit-score": 0.5}

        class FixedScorer:
            def score(self, query, entry, category):
                return SearchResult(
                    entry=entry,
                    category=category,
                    relevance_score=scores[entry.id],
                    confidence=0.5,
                    match_type=MatchType.FUZZY,
                )

        index = FAQIndex(corpus, FixedScorer(), SearchSettings(min_score=0.1))
        assert [result.entry.id for result in index.search("anything")] == ["credit-score", "create-budget"]

    def test_scoring_failure_raises_search_error(self, corpus):
        class BrokenScorer:
            def score(self, query, entry, category):
                raise RuntimeError("boom")

        index = FAQIndex(corpus, BrokenScorer())
        with pytest.raises(SearchError):
            index.search("credit score")


class TestRelatedAndSuggestions:
    """Tests for get_related and suggest."""

    def test_related_explicit_first(self, index):
        related = index.get_related("credit-score-improvement")
        assert [entry.id for entry in related[:2]] == ["credit-utilization", "check-credit-score"]

    def test_related_fills_from_category_without_duplicates(self):
        index = FAQIndex(parse_corpus(corpus_document()), RelevanceScorer(FuzzyMatcher()))
        related = index.get_related("create-budget")
        assert [entry.id for entry in related] == ["reduce-spending"]

    def test_related_excludes_self_and_respects_limit(self, index):
        related = index.get_related("create-budget", limit=1)
        assert len(related) == 1
        assert related[0].id != "create-budget"

    def test_related_unknown_id(self, index):
        assert index.get_related("missing") == []

    def test_suggest_questions_then_keywords(self, index):
        suggestions = index.suggest("budget")
        assert suggestions[0] == "How do I create a budget?"
        assert "create budget" in suggestions

    def test_suggest_includes_history(self, index):
        index.search("rental insurance budget")
        assert "rental insurance budget" in index.suggest("rental")

    def test_suggest_dedupes_and_caps(self, index):
        suggestions = index.suggest("credit", limit=3)
        assert len(suggestions) == 3
        assert len({s.lower() for s in suggestions}) == 3

    def test_suggest_blank(self, index):
        assert index.suggest("  ") == []


class TestHistoryAndStatistics:
    """Tests for search history and statistics."""

    def test_history_most_recent_first_without_duplicates(self, index):
        index.search("credit score")
        index.search("bank fees")
        index.search("Credit Score")
        assert index.search_history() == ["Credit Score", "bank fees"]

    def test_history_capped(self, corpus, scorer):
        index = FAQIndex(corpus, scorer, SearchSettings(history_limit=2))
        for query in ["one query", "two query", "three query"]:
            index.search(query)
        assert index.search_history() == ["three query", "two query"]

    def test_clear_history(self, index):
        index.search("credit score")
        index.clear_history()
        assert index.search_history() == []

    def test_statistics(self, index):
        index.search("credit score")
        index.search("credit score")
        stats = index.search_statistics()
        assert stats["total_searches"] == 2
        assert stats["top_queries"][0] == ("credit score", 2)
        assert stats["avg_results"] > 0

    def test_categories_in_display_order(self, index):
        orders = [category.order for category in index.categories()]
        assert orders == sorted(orders)

    def test_entries_in_category(self, index):
        assert [entry.id for entry in index.entries_in_category("banking")] == ["interac-etransfer", "bank-fees"]
        assert index.entries_in_category("missing") == []

    def test_history_persisted_and_restored(self, corpus, scorer):
        store = InMemoryKeyValueStore()

        async def scenario():
            background = BackgroundTasks()
            index = FAQIndex(corpus, scorer, store=store, background=background)
            index.search("credit score")
            await background.drain()

            restored = FAQIndex(corpus, scorer, store=store)
            await restored.load_history()
            return restored.search_history()

        assert run(scenario()) == ["credit score"]

    def test_corrupted_history_ignored(self, corpus, scorer):
        store = InMemoryKeyValueStore({HISTORY_STORAGE_KEY: "{not json"})
        index = FAQIndex(corpus, scorer, store=store)
        run(index.load_history())
        assert index.search_history() == []

    def test_storage_failure_is_not_fatal(self, corpus, scorer):
        async def scenario():
            background = BackgroundTasks()
            index = FAQIndex(corpus, scorer, store=FailingStore(), background=background)
            await index.load_history()
            results = index.search("credit score")
            await background.drain()
            return results

        assert run(scenario())
