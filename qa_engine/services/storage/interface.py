"""
Abstract Storage Interface

DESIGN DECISION: The engine only ever needs two storage shapes:
1. A best-effort string key-value store (cache entries, ledger, budget,
   offline queue, search history)
2. An append-only event sink (feedback, analytics, audit)

Keeping both contracts this small lets us:
1. Use in-memory storage for tests and local-only mode
2. Use Google Sheets when the operator wants to see the data
3. Swap in a real database later without touching engine logic

Callers treat every failure here as non-fatal. A StorageError is caught
at the component boundary, logged, and the component carries on with
its in-memory state.
"""

from abc import ABC, abstractmethod
from typing import Optional

from qa_engine.models.audit import AuditEvent


class KeyValueStore(ABC):
    """
    Abstract string key-value persistence.

    Assumed best-effort and eventually consistent.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Read a value.

        Returns:
            The stored string, or None if the key is absent

        Raises:
            StorageError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """
        Write a value, replacing any previous one.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """
        Delete a key. Removing an absent key is not an error.

        Raises:
            StorageError: If the delete fails
        """
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        """
        List keys starting with prefix.

        Raises:
            StorageError: If the backend cannot be read
        """
        pass


class EventSinkInterface(ABC):
    """
    Abstract append-only sink for feedback, analytics and audit events.

    Fire-and-forget from the engine's point of view.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an event.

        Returns:
            True if recorded successfully

        Raises:
            StorageError: If the sink cannot be reached
        """
        pass

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent events, newest first. Optional for sinks."""
        return []


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
