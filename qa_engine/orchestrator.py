"""
QA Resolver

Ties the engine components together and implements the per-query
resolution state machine:

    NORMALIZE -> CACHE_LOOKUP -> hit:  RETURN
                              -> miss: LOCAL_SEARCH
    LOCAL_SEARCH -> confident local answer -> CACHE_AND_RETURN -> RETURN
                 -> otherwise, allowance left -> ESCALATE
                 -> otherwise -> FALLBACK_RESPONSE
    ESCALATE -> success -> CACHE_AND_RETURN -> RETURN
             -> failure -> FALLBACK_RESPONSE

DESIGN DECISION: `resolve` never raises.
Every failure ends in a degraded but usable answer, and the visited
states are returned on the response for traceability.

DESIGN DECISION: Identical concurrent queries share one resolution.
The first query to miss the cache registers itself in an in-flight map;
later identical queries await its result instead of searching and
escalating again, so a burst of the same question costs at most one
generative call.

Feedback and result-selection analytics go to the event sink in the
background. While offline, or when the sink cannot be reached, they are
queued for replay.
"""

import asyncio
import time
from typing import Any, Optional
from uuid import UUID

import structlog

from qa_engine.audit import AuditLogger, create_correlation_id
from qa_engine.background import BackgroundTasks
from qa_engine.cache import ResultCache
from qa_engine.config import AppSettings, get_settings
from qa_engine.cost import CostGovernor, CostLedgerTracker
from qa_engine.faq import FAQIndex, load_corpus
from qa_engine.matching import FuzzyMatcher, RelevanceScorer
from qa_engine.models.audit import AuditEvent, AuditEventBuilder
from qa_engine.models.errors import FallbackResponse, OfflineActionKind
from qa_engine.models.faq import FAQEntry, SearchResult
from qa_engine.models.resolution import (
    AnswerSource,
    CachedAnswer,
    CacheEntryType,
    EscalationAction,
    QAResponse,
    ResolutionState,
)
from qa_engine.resilience import (
    CacheError,
    NetworkError,
    OfflineQueue,
    QASystemError,
    ResilienceLayer,
    coerce_failure,
)
from qa_engine.resilience import fallbacks
from qa_engine.services.connectivity import ConnectivityMonitor
from qa_engine.services.llm import GenerativeFallbackClient, build_prompt, estimate_confidence
from qa_engine.services.storage import (
    GoogleSheetsClient,
    GoogleSheetsEventSink,
    GoogleSheetsKeyValueStore,
    InMemoryKeyValueStore,
    KeyValueStore,
)


logger = structlog.get_logger(__name__)

SUGGESTION_COUNT = 3


class QAResolver:
    """
    Resolves questions into answers.

    Flow:
    1. Cache lookup on the normalized query
    2. FAQ search
    3. Budget decision
    4. Generative fallback under the resilience layer
    5. Cache the answer and return it

    The resolver owns no state of its own beyond the in-flight map; the
    index, cache, governor and resilience layer are passed in so they can
    be shared and tested separately.
    """

    def __init__(
        self,
        index: FAQIndex,
        cache: ResultCache,
        governor: CostGovernor,
        resilience: ResilienceLayer,
        llm_client: Optional[GenerativeFallbackClient] = None,
        audit_logger: Optional[AuditLogger] = None,
        background: Optional[BackgroundTasks] = None,
        app_settings: Optional[AppSettings] = None,
        dedupe_in_flight: bool = True,
    ):
        self._index = index
        self._cache = cache
        self._governor = governor
        self._resilience = resilience
        self._llm = llm_client
        self._audit = audit_logger or AuditLogger()
        self._background = background or BackgroundTasks()
        self._app_settings = app_settings or AppSettings()
        self._dedupe = dedupe_in_flight
        self._in_flight: dict[str, asyncio.Future] = {}

        self._resilience.register_replay_handler(OfflineActionKind.QUERY, self._replay_query)
        self._resilience.register_replay_handler(OfflineActionKind.FEEDBACK, self._replay_event)
        self._resilience.register_replay_handler(OfflineActionKind.ANALYTICS, self._replay_event)

    @property
    def index(self) -> FAQIndex:
        return self._index

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def governor(self) -> CostGovernor:
        return self._governor

    @property
    def resilience(self) -> ResilienceLayer:
        return self._resilience

    @property
    def background(self) -> BackgroundTasks:
        return self._background

    @property
    def has_llm(self) -> bool:
        return self._llm is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load persisted state. Missing or corrupted state starts fresh."""
        await self._governor.ledger.load()
        await self._governor.load()
        await self._cache.load()
        await self._resilience.offline_queue.load()
        await self._index.load_history()

        if self._resilience.is_online and len(self._resilience.offline_queue):
            self._background.spawn(self._resilience.replay_offline_queue(), name="offline_replay")

        logger.info(
            "resolver_initialized",
            corpus_version=self._index.version,
            faq_entries=len(self._index),
            cached_answers=len(self._cache),
            queued_offline=len(self._resilience.offline_queue),
            generative_fallback=self.has_llm,
        )

    async def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        """Wait for outstanding background work and detach from connectivity."""
        await self._background.drain(timeout)
        self._resilience.close()
        logger.info("resolver_shutdown")

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(self, query: str, context: Optional[str] = None) -> QAResponse:
        """Answer query. Never raises."""
        return await self._resolve(query, context, replaying=False)

    async def _resolve(self, query: str, context: Optional[str], replaying: bool) -> QAResponse:
        """
        Run the state machine once.

        A replayed query is already in the offline queue, so an offline
        fallback must not queue it a second time.
        """
        started = time.perf_counter()
        correlation_id = create_correlation_id()
        trace = [ResolutionState.NORMALIZE]

        text = (query or "").strip()[: self._app_settings.max_query_length]
        key = self._cache.make_key(text)
        if key is None:
            return self._fallback_response(
                query, fallbacks.get_fallback(fallbacks.NO_MATCH), trace, started, correlation_id
            )

        trace.append(ResolutionState.CACHE_LOOKUP)
        cached = await self._cache_lookup(text, trace, started, correlation_id)
        if cached is not None:
            return cached

        future: Optional[asyncio.Future] = None
        if self._dedupe:
            pending = self._in_flight.get(key)
            if pending is not None:
                shared = await asyncio.shield(pending)
                if shared is None:
                    # The first resolution was cancelled; start over
                    return await self._resolve(query, context, replaying)
                logger.info("in_flight_query_shared", key=key)
                return shared.model_copy(
                    update={"query": query, "details": {**shared.details, "shared": True}}
                )
            future = asyncio.get_running_loop().create_future()
            self._in_flight[key] = future

        response: Optional[QAResponse] = None
        try:
            response = await self._resolve_miss(text, context, trace, started, correlation_id, replaying)
        except Exception as e:
            outcome = await self._resilience.handle_error(e, {"stage": "resolve", "query": key})
            fallback = outcome.fallback or fallbacks.get_fallback(fallbacks.UNKNOWN)
            response = self._fallback_response(query, fallback, trace, started, correlation_id)
        finally:
            if future is not None:
                self._in_flight.pop(key, None)
                if not future.done():
                    future.set_result(response)

        return response

    async def _cache_lookup(
        self,
        text: str,
        trace: list[ResolutionState],
        started: float,
        correlation_id: UUID,
    ) -> Optional[QAResponse]:
        try:
            entry = self._cache.get(text)
        except Exception as e:
            # A broken cache is a miss, never a failed query
            await self._resilience.handle_error(CacheError(f"Cache lookup failed: {e}"), {"stage": "cache_lookup"})
            return None
        if entry is None:
            return None

        trace.append(ResolutionState.RETURN)
        payload = entry.payload
        self._background.spawn(
            self._audit.log_cache_hit(entry.key, entry.hit_count, correlation_id),
            name="audit_cache_hit",
        )
        return self._answer_response(
            text,
            payload,
            AnswerSource.CACHE,
            trace,
            started,
            correlation_id,
            details={"hit_count": entry.hit_count, "cached_source": payload.source.value},
        )

    async def _resolve_miss(
        self,
        text: str,
        context: Optional[str],
        trace: list[ResolutionState],
        started: float,
        correlation_id: UUID,
        replaying: bool = False,
    ) -> QAResponse:
        trace.append(ResolutionState.LOCAL_SEARCH)
        search = await self._resilience.execute(
            lambda: self._search(text),
            context={"stage": "local_search", "query": text[:100]},
        )
        if not search.succeeded:
            return await self._degrade(
                text, context, search.fallback, trace, started, correlation_id, queue_query=not replaying
            )

        results: list[SearchResult] = search.value or []
        top_score = self._index.top_match_score(results)

        if top_score >= self._governor.settings.escalation_threshold:
            return self._answer_from_faq(text, results[0], trace, started, correlation_id)

        local_suggestions = [result.entry.question for result in results[:SUGGESTION_COUNT]]

        if not self._resilience.is_online:
            fallback = fallbacks.get_fallback(fallbacks.OFFLINE, local_suggestions)
            return await self._degrade(
                text, context, fallback, trace, started, correlation_id, queue_query=not replaying
            )

        if self._llm is None:
            fallback = fallbacks.get_fallback(fallbacks.NO_MATCH, local_suggestions)
            return self._fallback_response(text, fallback, trace, started, correlation_id)

        decision = self._governor.decide(top_score)
        if decision.action == EscalationAction.QUOTA_EXCEEDED:
            self._background.spawn(
                self._audit.log_quota_exceeded(self._cache.make_key(text), top_score, correlation_id),
                name="audit_quota_exceeded",
            )
            fallback = fallbacks.get_fallback(fallbacks.QUOTA_EXCEEDED, local_suggestions)
            return self._fallback_response(
                text, fallback, trace, started, correlation_id,
                details={"period_end": decision.period_end.isoformat()},
            )

        trace.append(ResolutionState.ESCALATE)
        self._background.spawn(
            self._audit.log_escalated(self._cache.make_key(text), top_score, decision.remaining, correlation_id),
            name="audit_escalated",
        )
        return await self._escalate(
            text, context, [result.entry for result in results], local_suggestions,
            trace, started, correlation_id, replaying,
        )

    async def _search(self, text: str) -> list[SearchResult]:
        return self._index.search(text)

    def _answer_from_faq(
        self,
        text: str,
        best: SearchResult,
        trace: list[ResolutionState],
        started: float,
        correlation_id: UUID,
    ) -> QAResponse:
        related = self._index.get_related(best.entry.id, SUGGESTION_COUNT)
        payload = CachedAnswer(
            text=best.entry.answer,
            source=AnswerSource.FAQ,
            suggestions=[entry.question for entry in related],
            faq_id=best.entry.id,
            category=best.category.title,
            confidence=best.confidence,
        )
        self._store_answer(
            text, payload, CacheEntryType.FAQ, self._governor.settings.faq_lookup_saving, trace, started
        )
        return self._answer_response(
            text,
            payload,
            AnswerSource.FAQ,
            trace,
            started,
            correlation_id,
            match_type=best.match_type.value,
            details={
                "match_score": round(best.match_score, 4),
                "relevance_score": round(best.relevance_score, 4),
                "matched_terms": best.matched_terms,
            },
        )

    async def _escalate(
        self,
        text: str,
        context: Optional[str],
        local_entries: list[FAQEntry],
        local_suggestions: list[str],
        trace: list[ResolutionState],
        started: float,
        correlation_id: UUID,
        replaying: bool = False,
    ) -> QAResponse:
        prompt = build_prompt(
            text,
            context=context,
            related_entries=local_entries[:SUGGESTION_COUNT],
            product=self._app_settings.product_name,
        )
        result = await self._resilience.execute(
            lambda: self._llm.complete(prompt),
            context={"stage": "escalate", "query": text[:100]},
            timeout=self._resilience.timeout_seconds,
        )
        if not result.succeeded:
            fallback = result.fallback
            if local_suggestions:
                fallback = fallback.model_copy(update={"suggestions": local_suggestions})
            return await self._degrade(
                text, context, fallback, trace, started, correlation_id,
                details={"attempts": result.attempts},
                queue_query=not replaying,
            )

        completion = result.value
        cost = self._governor.record_generation(completion)
        payload = CachedAnswer(
            text=completion.text,
            source=AnswerSource.LLM,
            suggestions=local_suggestions,
            confidence=estimate_confidence(completion.text),
        )
        self._store_answer(text, payload, CacheEntryType.LLM, cost, trace, started)
        return self._answer_response(
            text,
            payload,
            AnswerSource.LLM,
            trace,
            started,
            correlation_id,
            details={
                "model": completion.model,
                "input_tokens": completion.input_tokens,
                "output_tokens": completion.output_tokens,
                "cost": cost,
                "attempts": result.attempts,
            },
        )

    def _store_answer(
        self,
        text: str,
        payload: CachedAnswer,
        entry_type: CacheEntryType,
        cost_saving: float,
        trace: list[ResolutionState],
        started: float,
    ) -> None:
        trace.append(ResolutionState.CACHE_AND_RETURN)
        try:
            self._cache.put(
                text,
                payload,
                entry_type,
                cost_saving=cost_saving,
                response_time_ms=(time.perf_counter() - started) * 1000,
            )
        except Exception as e:
            # The answer is still good; only the write is lost
            self._background.spawn(
                self._resilience.handle_error(CacheError(f"Cache write failed: {e}"), {"stage": "cache_write"}),
                name="cache_write_error",
            )

    # ------------------------------------------------------------------
    # Response building
    # ------------------------------------------------------------------

    def _answer_response(
        self,
        query: str,
        payload: CachedAnswer,
        source: AnswerSource,
        trace: list[ResolutionState],
        started: float,
        correlation_id: UUID,
        match_type: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> QAResponse:
        if trace[-1] != ResolutionState.RETURN:
            trace.append(ResolutionState.RETURN)
        elapsed_ms = (time.perf_counter() - started) * 1000
        key = self._cache.make_key(query) or ""

        self._background.spawn(
            self._audit.log_query_resolved(key, source.value, elapsed_ms, correlation_id, payload.faq_id),
            name="audit_query_resolved",
        )
        logger.info(
            "query_resolved",
            key=key,
            source=source.value,
            faq_id=payload.faq_id,
            response_time_ms=round(elapsed_ms, 2),
        )
        return QAResponse(
            query=query,
            text=payload.text,
            source=source,
            suggestions=list(payload.suggestions),
            faq_id=payload.faq_id,
            category=payload.category,
            match_type=match_type,
            confidence=payload.confidence,
            trace=trace,
            response_time_ms=elapsed_ms,
            details={"correlation_id": str(correlation_id), **(details or {})},
        )

    def _fallback_response(
        self,
        query: str,
        fallback: FallbackResponse,
        trace: list[ResolutionState],
        started: float,
        correlation_id: UUID,
        details: Optional[dict[str, Any]] = None,
    ) -> QAResponse:
        trace.append(ResolutionState.FALLBACK_RESPONSE)
        elapsed_ms = (time.perf_counter() - started) * 1000
        key = self._cache.make_key(query) or ""

        self._background.spawn(
            self._audit.log_fallback_served(key, fallback.key, correlation_id),
            name="audit_fallback_served",
        )
        logger.info("fallback_served", key=key, fallback_key=fallback.key)
        return QAResponse(
            query=query,
            text=fallback.text,
            source=AnswerSource.FALLBACK,
            suggestions=list(fallback.suggestions),
            fallback_key=fallback.key,
            trace=trace,
            response_time_ms=elapsed_ms,
            details={"correlation_id": str(correlation_id), **(details or {})},
        )

    async def _degrade(
        self,
        text: str,
        context: Optional[str],
        fallback: Optional[FallbackResponse],
        trace: list[ResolutionState],
        started: float,
        correlation_id: UUID,
        details: Optional[dict[str, Any]] = None,
        queue_query: bool = True,
    ) -> QAResponse:
        """Fallback response; an offline fallback also queues the query for replay."""
        fallback = fallback or fallbacks.get_fallback(fallbacks.UNKNOWN)
        if queue_query and fallback.key == fallbacks.OFFLINE:
            payload = {"query": text}
            if context:
                payload["context"] = context
            await self._resilience.queue_offline(OfflineActionKind.QUERY, payload)
        return self._fallback_response(text, fallback, trace, started, correlation_id, details)

    # ------------------------------------------------------------------
    # Feedback and analytics
    # ------------------------------------------------------------------

    async def submit_feedback(
        self,
        faq_id: str,
        helpful: bool,
        comment: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Record whether an answer helped.

        Returns True if the event was dispatched now, False if it was
        queued for replay.
        """
        event = AuditEventBuilder.feedback_submitted(faq_id, helpful, comment, correlation_id)
        return await self._dispatch(OfflineActionKind.FEEDBACK, event)

    async def record_result_selection(
        self,
        faq_id: str,
        query: str,
        position: int,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """Record that a search result was opened. Same delivery rules as feedback."""
        event = AuditEventBuilder.result_selected(faq_id, query, position, correlation_id)
        return await self._dispatch(OfflineActionKind.ANALYTICS, event)

    async def _dispatch(self, action: OfflineActionKind, event: AuditEvent) -> bool:
        if not self._resilience.is_online:
            await self._resilience.queue_offline(action, event.model_dump(mode="json"))
            return False
        self._background.spawn(self._send_event(action, event), name=f"send_{action.value}")
        return True

    async def _send_event(self, action: OfflineActionKind, event: AuditEvent) -> None:
        try:
            await self._audit.deliver(event)
        except Exception as e:
            failure = coerce_failure(e)
            await self._resilience.handle_error(
                failure, {"stage": f"send_{action.value}", "event_id": str(event.event_id)}
            )
            if isinstance(failure, NetworkError) or not self._resilience.is_online:
                await self._resilience.queue_offline(action, event.model_dump(mode="json"))

    async def _replay_event(self, payload: dict[str, Any]) -> None:
        event = AuditEvent.model_validate(payload)
        if not await self._audit.deliver(event):
            raise CacheError(f"Event sink rejected {event.event_id}")

    async def _replay_query(self, payload: dict[str, Any]) -> None:
        if not self._resilience.is_online:
            raise NetworkError("Still offline", context={"stage": "replay_query"})
        response = await self._resolve(payload["query"], payload.get("context"), replaying=True)
        if response.is_degraded:
            raise QASystemError(f"Replayed query degraded to {response.fallback_key}")

    # ------------------------------------------------------------------
    # Browsing helpers
    # ------------------------------------------------------------------

    def suggest(self, partial_query: str, limit: Optional[int] = None) -> list[str]:
        return self._index.suggest(partial_query, limit)

    def related_questions(self, faq_id: str, limit: Optional[int] = None) -> list[FAQEntry]:
        return self._index.get_related(faq_id, limit)

    def metrics(self) -> dict[str, Any]:
        """Everything an operator dashboard needs, in one dict."""
        return {
            "cache": self._cache.stats(),
            "budget": self._governor.snapshot(),
            "search": self._index.search_statistics(),
            "errors": self._resilience.error_statistics(),
            "offline_queue": self._resilience.offline_queue_status(),
            "in_flight": len(self._in_flight),
            "generative_fallback": self.has_llm,
        }


def _create_llm_client() -> Optional[GenerativeFallbackClient]:
    # Imported here so that a local-only deployment never loads the Gemini SDK
    from qa_engine.services.llm.gemini_service import GeminiFallbackClient

    try:
        return GeminiFallbackClient()
    except Exception as e:
        logger.warning("generative_fallback_unavailable", error=str(e))
        return None


def create_app_components(
    use_storage: bool = True,
    use_llm: bool = True,
    connectivity: Optional[ConnectivityMonitor] = None,
    store: Optional[KeyValueStore] = None,
    llm_client: Optional[GenerativeFallbackClient] = None,
) -> tuple[QAResolver, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all engine components.

    Args:
        use_storage: Whether to persist to Google Sheets.
                    Falls back to in-memory storage when not configured.
        use_llm: Whether to configure the Gemini fallback.
                 Without it, low-confidence queries get a no-match answer.
        connectivity: Shared connectivity monitor (a new one if omitted)
        store: Key-value store to use instead of Google Sheets
        llm_client: Generative client to use instead of Gemini

    Returns:
        (resolver, sheets_client)
    """
    settings = get_settings()
    sheets_client = None
    sink = None

    if store is None and use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            store = GoogleSheetsKeyValueStore(sheets_client)
            sink = GoogleSheetsEventSink(sheets_client)
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
    if store is None:
        store = InMemoryKeyValueStore()

    if llm_client is None and use_llm:
        llm_client = _create_llm_client()

    search_settings = settings.search
    resilience_settings = settings.resilience
    app_settings = settings.app

    background = BackgroundTasks()
    audit_logger = AuditLogger(sink)
    ledger = CostLedgerTracker(store=store, background=background)

    matcher = FuzzyMatcher(product_name=app_settings.product_name)
    scorer = RelevanceScorer(matcher, search_settings.enable_synonym_expansion)
    index = FAQIndex(
        load_corpus(search_settings.corpus_path),
        scorer,
        settings=search_settings,
        store=store,
        background=background,
    )
    cache = ResultCache(settings.cache, ledger=ledger, store=store, background=background)
    governor = CostGovernor(settings.budget, ledger=ledger, store=store, background=background)
    offline_queue = OfflineQueue(
        store=store,
        storage_key=resilience_settings.offline_queue_key,
        max_retries=resilience_settings.offline_max_retries,
        audit_logger=audit_logger,
    )
    resilience = ResilienceLayer(
        resilience_settings,
        connectivity=connectivity or ConnectivityMonitor(),
        offline_queue=offline_queue,
        audit_logger=audit_logger,
        background=background,
    )

    resolver = QAResolver(
        index,
        cache,
        governor,
        resilience,
        llm_client=llm_client,
        audit_logger=audit_logger,
        background=background,
        app_settings=app_settings,
        dedupe_in_flight=resilience_settings.dedupe_in_flight,
    )
    return resolver, sheets_client
