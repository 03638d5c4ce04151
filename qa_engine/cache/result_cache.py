"""
Result Cache

Maps a normalized query to a previously computed answer (FAQ or
generative) for a bounded time.

DESIGN DECISION: Eviction is least-recently-used.
Entries live in an OrderedDict ordered by last access; the most recently
used entry is at the end and eviction pops from the front. The size is
the dict's length, so the cap can never drift from the real contents.

Lookups and writes are synchronous and update the cost ledger in the
same step. Each entry is persisted under its own key as best-effort
background work; corrupted or expired records are discarded on load.
"""

import time
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Optional

import structlog
from pydantic import ValidationError

from qa_engine.background import BackgroundTasks
from qa_engine.config import CacheSettings
from qa_engine.cost.ledger import CostLedgerTracker
from qa_engine.models.resolution import CachedAnswer, CacheEntry, CacheEntryType, utc_now
from qa_engine.services.storage import KeyValueStore, StorageError


logger = structlog.get_logger(__name__)

LOW_HIT_RATE = 0.3
NEAR_CAPACITY = 0.9


class ResultCache:
    """TTL-bounded LRU cache of answers."""

    def __init__(
        self,
        settings: Optional[CacheSettings] = None,
        ledger: Optional[CostLedgerTracker] = None,
        store: Optional[KeyValueStore] = None,
        background: Optional[BackgroundTasks] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._settings = settings or CacheSettings()
        self._ledger = ledger or CostLedgerTracker(clock=clock)
        self._store = store
        self._background = background
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._evicted_count = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, query: str) -> bool:
        key = self.make_key(query)
        return key is not None and key in self._entries

    @property
    def max_entries(self) -> int:
        return self._settings.max_entries

    def make_key(self, query: str) -> Optional[str]:
        """Lowercased, trimmed, whitespace-collapsed, length-bounded key; None when blank."""
        key = " ".join(query.lower().split())[: self._settings.max_key_length].strip()
        return key or None

    def _storage_key(self, key: str) -> str:
        return f"{self._settings.key_prefix}{key}"

    def peek(self, query: str) -> Optional[CacheEntry]:
        """Entry for query without touching counters or recency."""
        key = self.make_key(query)
        return self._entries.get(key) if key else None

    def get(self, query: str) -> Optional[CacheEntry]:
        """
        Live entry for query, or None.

        An expired entry is purged and counts as a miss. A hit bumps
        hit_count and recency.
        """
        started = time.perf_counter()
        key = self.make_key(query)
        entry = self._entries.get(key) if key else None
        now = self._clock()

        if entry is not None and entry.is_expired(now, self._settings.ttl_seconds):
            logger.info("cache_entry_expired", key=key)
            self._discard(key)
            entry = None

        if entry is None:
            self._ledger.record_lookup(hit=False)
            return None

        entry.hit_count += 1
        entry.last_accessed_at = now
        self._entries.move_to_end(key)
        self._ledger.record_lookup(hit=True)
        self._ledger.record_response_time((time.perf_counter() - started) * 1000)
        self._schedule(self._persist(entry), "cache_persist")

        logger.debug("cache_hit", key=key, hit_count=entry.hit_count)
        return entry

    def put(
        self,
        query: str,
        payload: CachedAnswer,
        entry_type: CacheEntryType,
        cost_saving: float = 0.0,
        response_time_ms: Optional[float] = None,
    ) -> Optional[CacheEntry]:
        """
        Insert or overwrite the entry for query.

        Overwriting resets created_at and hit_count. FAQ answers credit
        their cost saving to the ledger once, here.
        """
        key = self.make_key(query)
        if key is None:
            return None

        now = self._clock()
        entry = CacheEntry(
            key=key,
            query=query,
            entry_type=entry_type,
            payload=payload,
            created_at=now,
            last_accessed_at=now,
            hit_count=0,
            cost_saving=cost_saving,
        )
        self._entries.pop(key, None)
        self._entries[key] = entry

        if entry_type == CacheEntryType.FAQ:
            self._ledger.credit_savings(cost_saving)
        if response_time_ms is not None:
            self._ledger.record_response_time(response_time_ms)

        self._evict_to_capacity()
        self._schedule(self._persist(entry), "cache_persist")
        return entry

    def _evict_to_capacity(self) -> None:
        while len(self._entries) > self._settings.max_entries:
            key, _ = self._entries.popitem(last=False)
            self._evicted_count += 1
            logger.info("cache_entry_evicted", key=key)
            self._schedule(self._remove_persisted(key), "cache_remove")

    def _discard(self, key: str) -> None:
        self._entries.pop(key, None)
        self._schedule(self._remove_persisted(key), "cache_remove")

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were dropped."""
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items()
            if entry.is_expired(now, self._settings.ttl_seconds)
        ]
        for key in expired:
            self._discard(key)
        return len(expired)

    def clear(self) -> None:
        for key in list(self._entries):
            self._discard(key)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _schedule(self, coro, name: str) -> None:
        if self._store is not None and self._background is not None:
            self._background.spawn(coro, name=name)
        else:
            coro.close()

    async def _persist(self, entry: CacheEntry) -> None:
        try:
            await self._store.set(self._storage_key(entry.key), entry.model_dump_json())
        except StorageError as e:
            logger.warning("cache_persist_failed", key=entry.key, error=str(e))

    async def _remove_persisted(self, key: str) -> None:
        try:
            await self._store.remove(self._storage_key(key))
        except StorageError as e:
            logger.warning("cache_remove_failed", key=key, error=str(e))

    async def load(self) -> int:
        """
        Restore persisted entries, most recently used last.

        Returns the number of entries loaded.
        """
        if self._store is None:
            return 0
        try:
            storage_keys = await self._store.list_keys(self._settings.key_prefix)
        except StorageError as e:
            logger.warning("cache_load_failed", error=str(e))
            return 0

        now = self._clock()
        loaded: list[CacheEntry] = []
        for storage_key in storage_keys:
            try:
                raw = await self._store.get(storage_key)
            except StorageError as e:
                logger.warning("cache_entry_load_failed", key=storage_key, error=str(e))
                continue

            entry = None
            if raw:
                try:
                    entry = CacheEntry.model_validate_json(raw)
                except ValidationError:
                    logger.warning("cache_entry_corrupted", key=storage_key)

            if entry is None or entry.is_expired(now, self._settings.ttl_seconds):
                try:
                    await self._store.remove(storage_key)
                except StorageError as e:
                    logger.warning("cache_remove_failed", key=storage_key, error=str(e))
                continue
            loaded.append(entry)

        loaded.sort(key=lambda entry: entry.last_accessed_at)
        for entry in loaded:
            self._entries[entry.key] = entry
        self._evict_to_capacity()

        logger.info("cache_loaded", entries=len(self._entries))
        return len(self._entries)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        """Size, hit rate, savings and tuning recommendations."""
        ledger = self._ledger.ledger
        entries = list(self._entries.values())
        hit_savings = sum(entry.hit_count * entry.cost_saving for entry in entries)

        recommendations = []
        if ledger.total_queries >= 10 and ledger.hit_rate < LOW_HIT_RATE:
            recommendations.append(
                "Cache hit rate is low; consider adding FAQ entries for frequent questions."
            )
        if len(entries) >= self._settings.max_entries * NEAR_CAPACITY:
            recommendations.append("Cache is near capacity; consider raising max_entries.")
        if ledger.generation_count and ledger.accrued_cost > ledger.total_cost_savings:
            recommendations.append(
                "Generative spend exceeds FAQ savings; review escalated questions for new FAQ topics."
            )

        return {
            "size": len(entries),
            "max_entries": self._settings.max_entries,
            "ttl_days": self._settings.ttl_days,
            "by_type": {
                entry_type.value: sum(1 for entry in entries if entry.entry_type == entry_type)
                for entry_type in CacheEntryType
            },
            "total_queries": ledger.total_queries,
            "cache_hits": ledger.cache_hits,
            "cache_misses": ledger.cache_misses,
            "hit_rate": ledger.hit_rate,
            "total_cost_savings": ledger.total_cost_savings,
            "hit_savings": hit_savings,
            "avg_response_time_ms": ledger.avg_response_time_ms,
            "evicted": self._evicted_count,
            "oldest_entry": min((entry.created_at for entry in entries), default=None),
            "recommendations": recommendations,
        }
