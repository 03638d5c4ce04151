"""
In-Memory Storage

Used in local-only mode (no Google Sheets configured) and in tests.
State lives as long as the process.
"""

from typing import Optional

from qa_engine.models.audit import AuditEvent
from qa_engine.services.storage.interface import EventSinkInterface, KeyValueStore


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed key-value store."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self, prefix: str = "") -> list[str]:
        return [key for key in self._data if key.startswith(prefix)]

    def snapshot(self) -> dict[str, str]:
        """Copy of the raw contents, for inspection in tests."""
        return dict(self._data)


class InMemoryEventSink(EventSinkInterface):
    """List-backed event sink."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return list(reversed(self.events[-limit:]))
