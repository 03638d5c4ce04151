"""
Offline Replay Queue

Actions attempted while offline are appended here instead of failing.
On reconnection the queue drains in FIFO order:

- every item is attempted once per drain
- a success removes the item
- a failure bumps retry_count; at the cap the item is dropped and the
  drop is counted (explicit data loss, never silent)

The queue is persisted as a single JSON document after every mutation.
Corrupted persisted state is discarded and the queue starts empty.
"""

from collections import Counter
from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from qa_engine.audit import AuditLogger
from qa_engine.models.audit import AuditEventType
from qa_engine.models.errors import OfflineActionKind, OfflineQueueItem
from qa_engine.services.storage import KeyValueStore, StorageError


logger = structlog.get_logger(__name__)

ReplayHandler = Callable[[dict[str, Any]], Awaitable[None]]

_ITEMS = TypeAdapter(list[OfflineQueueItem])


class DrainReport(BaseModel):
    """What one drain did."""

    attempted: int = 0
    replayed: int = 0
    failed: int = 0
    dropped: int = 0
    remaining: int = 0
    skipped: bool = False


class OfflineQueue:
    """Persisted FIFO of deferred actions."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        storage_key: str = "qa_offline_queue",
        max_retries: int = 3,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._storage_key = storage_key
        self._max_retries = max_retries
        self._audit = audit_logger
        self._items: list[OfflineQueueItem] = []
        self._handlers: dict[OfflineActionKind, ReplayHandler] = {}
        self._dropped_count = 0
        self._draining = False

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> list[OfflineQueueItem]:
        return list(self._items)

    @property
    def dropped_count(self) -> int:
        """Items discarded after exhausting their retries, since startup."""
        return self._dropped_count

    def register_handler(self, action: OfflineActionKind, handler: ReplayHandler) -> None:
        """Set the coroutine that replays items of one kind. It signals failure by raising."""
        self._handlers[action] = handler

    async def load(self) -> None:
        """Restore persisted items. Corrupted state is treated as empty."""
        if self._store is None:
            return
        try:
            raw = await self._store.get(self._storage_key)
        except StorageError as e:
            logger.warning("offline_queue_load_failed", error=str(e))
            return
        if not raw:
            return

        try:
            self._items = _ITEMS.validate_json(raw)
        except ValidationError as e:
            logger.warning("offline_queue_corrupted", error=str(e))
            self._items = []
            try:
                await self._store.remove(self._storage_key)
            except StorageError as e:
                logger.warning("offline_queue_cleanup_failed", error=str(e))

    async def persist(self) -> None:
        if self._store is None:
            return
        try:
            await self._store.set(self._storage_key, _ITEMS.dump_json(self._items).decode())
        except StorageError as e:
            logger.warning("offline_queue_persist_failed", error=str(e))

    async def enqueue(self, action: OfflineActionKind, payload: dict[str, Any]) -> OfflineQueueItem:
        item = OfflineQueueItem(action=action, payload=payload)
        self._items.append(item)
        logger.info("offline_item_queued", item_id=str(item.id), action=action.value, size=len(self._items))
        await self.persist()
        if self._audit:
            await self._audit.log_offline_event(
                AuditEventType.OFFLINE_QUEUED, item.id, action.value, item.retry_count
            )
        return item

    async def drain(self) -> DrainReport:
        """
        Attempt every queued item once, in order.

        A drain requested while another is running is skipped, so one
        reconnection never attempts an item twice.
        """
        if self._draining:
            return DrainReport(skipped=True, remaining=len(self._items))

        self._draining = True
        report = DrainReport()
        try:
            for item in list(self._items):
                report.attempted += 1
                handler = self._handlers.get(item.action)
                try:
                    if handler is None:
                        raise LookupError(f"No replay handler for {item.action.value}")
                    await handler(item.payload)
                except Exception as e:
                    item.retry_count += 1
                    report.failed += 1
                    logger.warning(
                        "offline_replay_failed",
                        item_id=str(item.id),
                        action=item.action.value,
                        retry_count=item.retry_count,
                        error=str(e),
                    )
                    if item.retry_count >= self._max_retries:
                        self._remove(item)
                        self._dropped_count += 1
                        report.dropped += 1
                        await self._log(AuditEventType.OFFLINE_DROPPED, item)
                    continue

                self._remove(item)
                report.replayed += 1
                await self._log(AuditEventType.OFFLINE_REPLAYED, item)
        finally:
            self._draining = False
            report.remaining = len(self._items)
            await self.persist()

        logger.info("offline_queue_drained", **report.model_dump())
        return report

    def _remove(self, item: OfflineQueueItem) -> None:
        self._items = [queued for queued in self._items if queued.id != item.id]

    async def _log(self, event_type: AuditEventType, item: OfflineQueueItem) -> None:
        if self._audit:
            await self._audit.log_offline_event(event_type, item.id, item.action.value, item.retry_count)

    def status(self) -> dict[str, Any]:
        """Queue size, breakdown by action, drop count and oldest item age."""
        by_action = Counter(item.action.value for item in self._items)
        return {
            "size": len(self._items),
            "by_action": dict(by_action),
            "dropped_count": self._dropped_count,
            "oldest_enqueued_at": self._items[0].enqueued_at.isoformat() if self._items else None,
            "max_retries": self._max_retries,
        }
