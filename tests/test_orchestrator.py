"""
End-to-end tests for the resolver over the shipped corpus.

Every external dependency is faked (see conftest.py), so these run the
real index, cache, governor and resilience layer together.
"""

import asyncio

import pytest

from conftest import LLM_ANSWER, FailingStore, FakeLLM, FlakySink, run
from qa_engine.models.audit import AuditEventType
from qa_engine.models.errors import ErrorSeverity, ErrorType, OfflineActionKind
from qa_engine.models.resolution import AnswerSource, ResolutionState
from qa_engine.orchestrator import create_app_components
from qa_engine.resilience import ApiError, NetworkError, ParsingError, SearchError
from qa_engine.resilience import fallbacks
from qa_engine.services.connectivity import ConnectivityMonitor
from qa_engine.services.storage import InMemoryEventSink, InMemoryKeyValueStore


NONSENSE = "zzqx blorf wumpus"


async def ask(resolver, *queries):
    """Resolve queries one after another, then let background work settle."""
    responses = [await resolver.resolve(query) for query in queries]
    await resolver.background.drain()
    return responses


def events_of(sink, event_type):
    return [event for event in sink.events if event.event_type == event_type]


class TestLocalAnswers:
    """Queries the FAQ can answer on its own."""

    def test_exact_question(self, build_resolver):
        resolver = build_resolver()
        [response] = run(ask(resolver, "What's the difference between TFSA and RRSP?"))

        assert response.source == AnswerSource.FAQ
        assert response.faq_id == "tfsa-vs-rrsp"
        assert response.match_type == "exact"
        assert response.details["match_score"] >= 0.9
        assert response.category == "Saving and Investing"
        assert response.suggestions == ["How much should I keep in an emergency fund?"]
        assert response.trace == [
            ResolutionState.NORMALIZE,
            ResolutionState.CACHE_LOOKUP,
            ResolutionState.LOCAL_SEARCH,
            ResolutionState.CACHE_AND_RETURN,
            ResolutionState.RETURN,
        ]

    def test_typo_query(self, build_resolver):
        resolver = build_resolver()
        [response] = run(ask(resolver, "cedit scor imporvement"))

        assert response.source == AnswerSource.FAQ
        assert response.faq_id == "credit-score-improvement"
        assert response.match_type in ("fuzzy", "ngram", "partial")
        assert 0 < response.details["match_score"] < 0.9

    def test_local_answer_spends_no_budget(self, build_resolver):
        llm = FakeLLM()
        resolver = build_resolver(llm=llm)
        run(ask(resolver, "How do I create a budget?"))
        assert llm.calls == 0
        assert resolver.governor.remaining == 5

    def test_faq_answer_credits_savings(self, build_resolver):
        resolver = build_resolver()
        run(ask(resolver, "How do I create a budget?"))
        ledger = resolver.governor.ledger.ledger
        assert ledger.total_cost_savings == pytest.approx(0.001)
        assert ledger.accrued_cost == 0.0


class TestCaching:
    """Repeated questions are served from the cache."""

    def test_second_ask_hits_cache(self, build_resolver):
        resolver = build_resolver()
        first, second = run(ask(resolver, "How do I create a budget?", "how do i create a budget?"))

        assert first.source == AnswerSource.FAQ
        assert second.source == AnswerSource.CACHE
        assert second.text == first.text
        assert second.faq_id == "create-budget"
        assert second.details["hit_count"] == 1
        assert second.details["cached_source"] == "faq"
        assert second.trace == [
            ResolutionState.NORMALIZE,
            ResolutionState.CACHE_LOOKUP,
            ResolutionState.RETURN,
        ]

    def test_expired_answer_is_recomputed(self, build_resolver, clock):
        resolver = build_resolver()
        run(ask(resolver, "How do I create a budget?"))
        clock.advance(days=31)
        [response] = run(ask(resolver, "How do I create a budget?"))
        assert response.source == AnswerSource.FAQ

    def test_cache_hit_is_audited(self, build_resolver):
        sink = InMemoryEventSink()
        resolver = build_resolver(sink=sink)
        run(ask(resolver, "How do I create a budget?", "How do I create a budget?"))
        assert len(events_of(sink, AuditEventType.CACHE_HIT)) == 1
        assert len(events_of(sink, AuditEventType.QUERY_RESOLVED)) == 2

    def test_cache_stays_bounded(self, build_resolver):
        resolver = build_resolver(max_entries=2)
        run(ask(
            resolver,
            "How do I create a budget?",
            "How do I avoid monthly bank fees?",
            "What is credit utilization?",
        ))
        assert len(resolver.cache) == 2
        assert "How do I create a budget?" not in resolver.cache


class TestEscalation:
    """Low-confidence queries go to the generative fallback within budget."""

    def test_low_score_escalates(self, build_resolver):
        llm = FakeLLM()
        resolver = build_resolver(llm=llm)
        [response] = run(ask(resolver, NONSENSE))

        assert response.source == AnswerSource.LLM
        assert response.text == LLM_ANSWER
        assert 0.3 <= response.confidence <= 0.95
        assert llm.calls == 1
        assert NONSENSE in llm.prompts[0]
        assert ResolutionState.ESCALATE in response.trace
        assert response.trace[-2:] == [ResolutionState.CACHE_AND_RETURN, ResolutionState.RETURN]

    def test_cost_charged_not_saved(self, build_resolver):
        resolver = build_resolver(llm=FakeLLM())
        [response] = run(ask(resolver, NONSENSE))

        ledger = resolver.governor.ledger.ledger
        assert response.details["cost"] == pytest.approx(0.0002)
        assert ledger.accrued_cost == pytest.approx(0.0002)
        assert ledger.generation_count == 1
        assert ledger.total_cost_savings == 0.0
        assert resolver.governor.remaining == 4

    def test_generated_answer_is_cached(self, build_resolver):
        llm = FakeLLM()
        resolver = build_resolver(llm=llm)
        first, second = run(ask(resolver, NONSENSE, NONSENSE))
        assert first.source == AnswerSource.LLM
        assert second.source == AnswerSource.CACHE
        assert second.details["cached_source"] == "llm"
        assert llm.calls == 1

    def test_allowance_is_a_hard_cap(self, build_resolver):
        llm = FakeLLM()
        resolver = build_resolver(llm=llm, allowance=2)
        responses = run(ask(resolver, NONSENSE, "vvkj plonk quaxx", "xxjq wibble frobz"))

        assert [response.source for response in responses] == [
            AnswerSource.LLM,
            AnswerSource.LLM,
            AnswerSource.FALLBACK,
        ]
        assert responses[2].fallback_key == fallbacks.QUOTA_EXCEEDED
        assert responses[2].details["period_end"] == "2025-07-01T00:00:00+00:00"
        assert llm.calls == 2

    def test_quota_refusal_is_audited(self, build_resolver):
        sink = InMemoryEventSink()
        resolver = build_resolver(llm=FakeLLM(), allowance=0, sink=sink)
        run(ask(resolver, NONSENSE))
        assert len(events_of(sink, AuditEventType.QUOTA_EXCEEDED)) == 1

    def test_without_generative_client(self, build_resolver):
        resolver = build_resolver(llm=None)
        [response] = run(ask(resolver, NONSENSE))
        assert response.fallback_key == fallbacks.NO_MATCH
        assert resolver.governor.remaining == 5

    def test_rate_limited_generation(self, build_resolver, sleep):
        llm = FakeLLM([ApiError("Too many requests", status=429)])
        sink = InMemoryEventSink()
        resolver = build_resolver(llm=llm, sink=sink)
        [response] = run(ask(resolver, NONSENSE))

        assert response.source == AnswerSource.FALLBACK
        assert response.fallback_key == fallbacks.RATE_LIMITED
        assert llm.calls == 2
        assert sleep.delays == [5.0]

        error = resolver.resilience.recent_errors()[-1]
        assert error.error_type == ErrorType.API
        assert error.severity == ErrorSeverity.HIGH
        assert error.recovered
        assert events_of(sink, AuditEventType.OPERATOR_ALERT)

    def test_failed_generation_is_not_refunded(self, build_resolver):
        resolver = build_resolver(llm=FakeLLM([ParsingError("empty answer")]))
        [response] = run(ask(resolver, NONSENSE))
        assert response.fallback_key == fallbacks.PARSING_ERROR
        assert resolver.governor.remaining == 4
        assert NONSENSE not in resolver.cache

    def test_transient_network_failure_recovers(self, build_resolver, sleep):
        llm = FakeLLM([NetworkError("reset"), NetworkError("reset")] + FakeLLM().outcomes)
        resolver = build_resolver(llm=llm)
        [response] = run(ask(resolver, NONSENSE))
        assert response.source == AnswerSource.LLM
        assert response.details["attempts"] == 3
        assert sleep.delays == [1.0, 1.0]


class TestConcurrency:
    """Identical concurrent queries share one resolution."""

    def test_identical_queries_share_one_generation(self, build_resolver):
        llm = FakeLLM(delay=0.01)
        resolver = build_resolver(llm=llm)

        async def scenario():
            responses = await asyncio.gather(resolver.resolve(NONSENSE), resolver.resolve(NONSENSE))
            await resolver.background.drain()
            return responses

        first, second = run(scenario())
        assert llm.calls == 1
        assert first.text == second.text
        assert second.details.get("shared") is True
        assert resolver.governor.remaining == 4

    def test_without_sharing_each_query_escalates(self, build_resolver):
        llm = FakeLLM(delay=0.01)
        resolver = build_resolver(llm=llm, dedupe=False)

        async def scenario():
            return await asyncio.gather(resolver.resolve(NONSENSE), resolver.resolve(NONSENSE))

        run(scenario())
        assert llm.calls == 2

    def test_concurrent_distinct_queries_respect_cap(self, build_resolver):
        llm = FakeLLM(delay=0.01)
        resolver = build_resolver(llm=llm, allowance=1)

        async def scenario():
            return await asyncio.gather(
                resolver.resolve(NONSENSE),
                resolver.resolve("vvkj plonk quaxx"),
            )

        responses = run(scenario())
        assert llm.calls == 1
        assert sorted(response.source.value for response in responses) == ["fallback", "llm"]


class TestDegradation:
    """Failures end in a usable answer, never an exception."""

    def test_blank_query(self, build_resolver):
        [response] = run(ask(build_resolver(), "   "))
        assert response.fallback_key == fallbacks.NO_MATCH
        assert response.trace == [ResolutionState.NORMALIZE, ResolutionState.FALLBACK_RESPONSE]

    def test_search_failure(self, build_resolver, monkeypatch, sleep):
        resolver = build_resolver()

        def broken_search(query, category_filter=None):
            raise SearchError("index unavailable")

        monkeypatch.setattr(resolver.index, "search", broken_search)
        [response] = run(ask(resolver, "How do I create a budget?"))

        assert response.fallback_key == fallbacks.SEARCH_FAILED
        assert sleep.delays == [0.5]
        assert response.suggestions

    def test_unexpected_failure(self, build_resolver, monkeypatch):
        resolver = build_resolver(llm=FakeLLM())

        def broken_decide(score):
            raise RuntimeError("governor exploded")

        monkeypatch.setattr(resolver.governor, "decide", broken_decide)
        [response] = run(ask(resolver, NONSENSE))
        assert response.source == AnswerSource.FALLBACK
        assert response.fallback_key == fallbacks.UNKNOWN

    def test_storage_outage_is_tolerated(self, build_resolver):
        resolver = build_resolver(store=FailingStore())

        async def scenario():
            await resolver.initialize()
            return await ask(resolver, "How do I create a budget?", "How do I create a budget?")

        first, second = run(scenario())
        assert first.source == AnswerSource.FAQ
        assert second.source == AnswerSource.CACHE

    def test_long_query_truncated(self, build_resolver):
        [response] = run(ask(build_resolver(), "budget " * 200))
        assert len(response.query) <= 500
        assert response.source == AnswerSource.FAQ


class TestOffline:
    """Offline behaviour and replay on reconnection."""

    def test_feedback_queued_offline_and_replayed_once(self, build_resolver):
        connectivity = ConnectivityMonitor()
        sink = InMemoryEventSink()
        resolver = build_resolver(connectivity=connectivity, sink=sink)

        async def scenario():
            connectivity.set_online(False)
            sent = await resolver.submit_feedback("bank-fees", True, comment="clear")
            queued = len(resolver.resilience.offline_queue)
            connectivity.set_online(True)
            await resolver.background.drain()
            connectivity.set_online(True)
            await resolver.background.drain()
            return sent, queued

        sent, queued = run(scenario())
        assert sent is False
        assert queued == 1
        feedback = events_of(sink, AuditEventType.FEEDBACK_SUBMITTED)
        assert len(feedback) == 1
        assert feedback[0].entity_id == "bank-fees"
        assert feedback[0].details["comment"] == "clear"
        assert len(resolver.resilience.offline_queue) == 0

    def test_unreachable_sink_queues_feedback(self, build_resolver):
        sink = FlakySink(failures=1)
        resolver = build_resolver(sink=sink)

        async def scenario():
            sent = await resolver.submit_feedback("bank-fees", False)
            await resolver.background.drain()
            queued = len(resolver.resilience.offline_queue)
            report = await resolver.resilience.replay_offline_queue()
            return sent, queued, report

        sent, queued, report = run(scenario())
        assert sent is True
        assert queued == 1
        assert report.replayed == 1
        assert len(events_of(sink, AuditEventType.FEEDBACK_SUBMITTED)) == 1

    def test_result_selection_online(self, build_resolver):
        sink = InMemoryEventSink()
        resolver = build_resolver(sink=sink)

        async def scenario():
            sent = await resolver.record_result_selection("bank-fees", "bank fees", 0)
            await resolver.background.drain()
            return sent

        assert run(scenario()) is True
        [event] = events_of(sink, AuditEventType.RESULT_SELECTED)
        assert event.details == {"query": "bank fees", "position": 0}

    def test_local_answers_work_offline(self, build_resolver):
        resolver = build_resolver(connectivity=ConnectivityMonitor(online=False))
        [response] = run(ask(resolver, "How do I create a budget?"))
        assert response.source == AnswerSource.FAQ

    def test_unanswerable_query_queued_and_replayed(self, build_resolver):
        connectivity = ConnectivityMonitor(online=False)
        llm = FakeLLM()
        resolver = build_resolver(llm=llm, connectivity=connectivity)

        async def scenario():
            offline = await resolver.resolve(NONSENSE)
            queued = [item.action for item in resolver.resilience.offline_queue.items]
            connectivity.set_online(True)
            await resolver.background.drain()
            return offline, queued

        offline, queued = run(scenario())
        assert offline.fallback_key == fallbacks.OFFLINE
        assert queued == [OfflineActionKind.QUERY]
        assert llm.calls == 1
        assert NONSENSE in resolver.cache
        assert resolver.governor.remaining == 4

    def test_queue_survives_restart(self, build_resolver):
        store = InMemoryKeyValueStore()
        sink = InMemoryEventSink()
        offline = build_resolver(store=store, sink=sink, connectivity=ConnectivityMonitor(online=False))
        run(offline.submit_feedback("create-budget", True))

        restarted = build_resolver(store=store, sink=sink)

        async def scenario():
            await restarted.initialize()
            await restarted.background.drain()

        run(scenario())
        assert len(events_of(sink, AuditEventType.FEEDBACK_SUBMITTED)) == 1
        assert len(restarted.resilience.offline_queue) == 0

    def test_queued_feedback_is_persisted(self, build_resolver):
        store = InMemoryKeyValueStore()
        resolver = build_resolver(store=store, connectivity=ConnectivityMonitor(online=False))
        run(resolver.submit_feedback("bank-fees", True))

        assert "qa_offline_queue" in store.snapshot()

    def test_factory_wiring_persists_offline_queue(self):
        """Components built by create_app_components keep the queue in the store."""
        store = InMemoryKeyValueStore()
        resolver, sheets_client = create_app_components(
            use_llm=False,
            connectivity=ConnectivityMonitor(online=False),
            store=store,
        )

        async def scenario():
            await resolver.initialize()
            await resolver.submit_feedback("bank-fees", False)
            await resolver.shutdown()

        run(scenario())
        assert sheets_client is None
        assert "bank-fees" in store.snapshot()["qa_offline_queue"]

        restarted, _ = create_app_components(
            use_llm=False,
            connectivity=ConnectivityMonitor(online=False),
            store=store,
        )
        run(restarted.initialize())
        assert len(restarted.resilience.offline_queue) == 1

    def test_replay_while_offline_never_grows_the_queue(self, build_resolver):
        """Each reconnection costs the queued query one attempt until it is dropped."""
        connectivity = ConnectivityMonitor(online=False)
        llm = FakeLLM()
        resolver = build_resolver(llm=llm, connectivity=connectivity)
        queue = resolver.resilience.offline_queue

        async def scenario():
            await resolver.resolve(NONSENSE)
            sizes = []
            for _ in range(3):
                connectivity.set_online(True)
                connectivity.set_online(False)
                await resolver.background.drain()
                sizes.append(len(queue))
            return sizes

        assert run(scenario()) == [1, 1, 0]
        assert queue.dropped_count == 1
        assert llm.calls == 0

    def test_connection_lost_during_replay_does_not_requeue(self, build_resolver):
        connectivity = ConnectivityMonitor(online=False)

        class DroppingLLM(FakeLLM):
            async def complete(self, prompt):
                self.prompts.append(prompt)
                connectivity.set_online(False)
                raise ConnectionError("connection reset")

        llm = DroppingLLM()
        resolver = build_resolver(llm=llm, connectivity=connectivity)
        queue = resolver.resilience.offline_queue

        async def scenario():
            await resolver.resolve(NONSENSE)
            sizes = []
            for _ in range(3):
                connectivity.set_online(True)
                await resolver.background.drain()
                sizes.append(len(queue))
            return sizes

        assert run(scenario()) == [1, 1, 0]
        assert llm.calls == 3
        assert queue.dropped_count == 1


class TestLifecycleAndMetrics:
    """Initialization, shutdown and the operator view."""

    def test_state_restored_on_initialize(self, build_resolver):
        store = InMemoryKeyValueStore()
        first = build_resolver(store=store, llm=FakeLLM())
        run(ask(first, NONSENSE))

        llm = FakeLLM()
        second = build_resolver(store=store, llm=llm)

        async def scenario():
            await second.initialize()
            return await ask(second, NONSENSE)

        [response] = run(scenario())
        assert response.source == AnswerSource.CACHE
        assert llm.calls == 0
        assert second.governor.remaining == 4

    def test_shutdown_detaches_from_connectivity(self, build_resolver):
        connectivity = ConnectivityMonitor(online=False)
        resolver = build_resolver(connectivity=connectivity)

        async def scenario():
            await resolver.submit_feedback("bank-fees", True)
            await resolver.shutdown()
            connectivity.set_online(True)
            await resolver.background.drain()

        run(scenario())
        assert len(resolver.resilience.offline_queue) == 1

    def test_metrics(self, build_resolver):
        resolver = build_resolver(llm=FakeLLM())
        run(ask(resolver, "How do I create a budget?", NONSENSE, NONSENSE))
        metrics = resolver.metrics()

        assert metrics["cache"]["cache_hits"] == 1
        assert metrics["cache"]["by_type"] == {"faq": 1, "llm": 1}
        assert metrics["budget"]["used"] == 1
        assert metrics["search"]["total_searches"] == 2
        assert metrics["offline_queue"]["size"] == 0
        assert metrics["in_flight"] == 0
        assert metrics["generative_fallback"] is True

    def test_suggestions_and_related(self, build_resolver):
        resolver = build_resolver()
        assert resolver.suggest("budget")[0] == "How do I create a budget?"
        assert [entry.id for entry in resolver.related_questions("create-budget")][:2] == [
            "reduce-spending",
            "emergency-fund",
        ]
