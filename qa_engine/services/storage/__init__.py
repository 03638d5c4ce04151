"""
Storage Services Package

Provides abstract interfaces and concrete implementations for persistence.
In-memory storage is always available; Google Sheets is used when configured.
"""

from qa_engine.services.storage.interface import (
    EventSinkInterface,
    KeyValueStore,
    StorageConnectionError,
    StorageError,
)
from qa_engine.services.storage.memory import (
    InMemoryEventSink,
    InMemoryKeyValueStore,
)
from qa_engine.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsEventSink,
    GoogleSheetsKeyValueStore,
)

__all__ = [
    # Interfaces
    "EventSinkInterface",
    "KeyValueStore",
    # Exceptions
    "StorageConnectionError",
    "StorageError",
    # In-memory implementation
    "InMemoryEventSink",
    "InMemoryKeyValueStore",
    # Google Sheets implementation
    "GoogleSheetsClient",
    "GoogleSheetsEventSink",
    "GoogleSheetsKeyValueStore",
]
