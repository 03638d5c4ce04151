"""
Shared fixtures and fakes.

No test talks to Google Sheets or Gemini: the key-value store, the event
sink, the generative client, the clock and the backoff sleep are all
replaced here.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import pytest

from qa_engine.audit import AuditLogger
from qa_engine.background import BackgroundTasks
from qa_engine.cache import ResultCache
from qa_engine.config import (
    AppSettings,
    BudgetSettings,
    CacheSettings,
    ResilienceSettings,
    SearchSettings,
)
from qa_engine.config.settings import DEFAULT_CORPUS_PATH
from qa_engine.cost import CostGovernor, CostLedgerTracker
from qa_engine.faq import FAQIndex, load_corpus
from qa_engine.matching import FuzzyMatcher, RelevanceScorer
from qa_engine.models.audit import AuditEvent
from qa_engine.models.resolution import Completion
from qa_engine.orchestrator import QAResolver
from qa_engine.resilience import OfflineQueue, ResilienceLayer
from qa_engine.services.connectivity import ConnectivityMonitor
from qa_engine.services.llm import GenerativeFallbackClient
from qa_engine.services.storage import (
    EventSinkInterface,
    InMemoryEventSink,
    InMemoryKeyValueStore,
    KeyValueStore,
    StorageConnectionError,
    StorageError,
)


START = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)

LLM_ANSWER = (
    "In Canada, a good first step is to compare high-interest savings accounts "
    "at your bank and at online banks like Tangerine.\n"
    "- Check the rate and any monthly fees\n"
    "- Keep the account CDIC insured"
)


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers every backoff."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeLLM(GenerativeFallbackClient):
    """
    Scripted generative client.

    Each call consumes the next scripted outcome; the last one repeats.
    An outcome is a Completion to return or an exception to raise.
    """

    def __init__(
        self,
        outcomes: Optional[list[Union[Completion, Exception]]] = None,
        delay: float = 0.0,
    ):
        self.outcomes = outcomes or [Completion(text=LLM_ANSWER, input_tokens=100, output_tokens=50, model="fake")]
        self.delay = delay
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def complete(self, prompt: str) -> Completion:
        outcome = self.outcomes[min(len(self.prompts), len(self.outcomes) - 1)]
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FailingStore(KeyValueStore):
    """A key-value store whose backend is always down."""

    async def get(self, key: str) -> Optional[str]:
        raise StorageError("backend unavailable")

    async def set(self, key: str, value: str) -> None:
        raise StorageError("backend unavailable")

    async def remove(self, key: str) -> None:
        raise StorageError("backend unavailable")

    async def list_keys(self, prefix: str = "") -> list[str]:
        raise StorageError("backend unavailable")


class FlakySink(EventSinkInterface):
    """An event sink that cannot be reached for the first `failures` writes."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise StorageConnectionError("sink unreachable")
        self.events.append(event)
        return True


def run(coro):
    """Drive a coroutine from a synchronous test."""
    return asyncio.run(coro)


@pytest.fixture
def corpus():
    return load_corpus(DEFAULT_CORPUS_PATH)


@pytest.fixture
def matcher():
    return FuzzyMatcher()


@pytest.fixture
def scorer(matcher):
    return RelevanceScorer(matcher)


@pytest.fixture
def index(corpus, scorer):
    return FAQIndex(corpus, scorer, SearchSettings())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def build_resolver(corpus, clock, sleep):
    """
    Factory for fully wired resolvers over the shipped corpus.

    Everything is in memory; keyword arguments override the pieces a
    test cares about.
    """

    def build(
        llm: Optional[GenerativeFallbackClient] = None,
        allowance: int = 5,
        max_entries: int = 500,
        store: Optional[KeyValueStore] = None,
        sink: Optional[EventSinkInterface] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        dedupe: bool = True,
    ) -> QAResolver:
        store = store if store is not None else InMemoryKeyValueStore()
        sink = sink if sink is not None else InMemoryEventSink()
        background = BackgroundTasks()
        audit_logger = AuditLogger(sink)
        ledger = CostLedgerTracker(store=store, background=background, clock=clock)

        index = FAQIndex(
            corpus,
            RelevanceScorer(FuzzyMatcher()),
            SearchSettings(),
            store=store,
            background=background,
        )
        cache = ResultCache(
            CacheSettings(max_entries=max_entries),
            ledger=ledger,
            store=store,
            background=background,
            clock=clock,
        )
        governor = CostGovernor(
            BudgetSettings(allowance=allowance),
            ledger=ledger,
            store=store,
            background=background,
            clock=clock,
        )
        resilience_settings = ResilienceSettings(dedupe_in_flight=dedupe)
        resilience = ResilienceLayer(
            resilience_settings,
            connectivity=connectivity or ConnectivityMonitor(),
            offline_queue=OfflineQueue(store=store, audit_logger=audit_logger),
            audit_logger=audit_logger,
            background=background,
            sleep=sleep,
        )
        return QAResolver(
            index,
            cache,
            governor,
            resilience,
            llm_client=llm,
            audit_logger=audit_logger,
            background=background,
            app_settings=AppSettings(),
            dedupe_in_flight=dedupe,
        )

    return build
