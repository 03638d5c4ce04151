"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets backs the key-value store and the event
sink when configured because:
1. Operators can inspect cache, budget and feedback data directly
2. No database setup required
3. Feedback rows can be exported for corpus curation

TRADEOFFS:
- Every call is a network round-trip (fine: persistence is best-effort
  and the engine works from its in-memory copy)
- No transactions (last write wins, which matches the engine's model)
- gspread is blocking, so calls run in a worker thread

The implementation follows the abstract interfaces, so a real database
can replace it without changing engine logic.
"""

import asyncio
import json
import threading
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from qa_engine.config import GoogleSheetsSettings, get_settings
from qa_engine.models.audit import AuditEvent, AuditEventType, AuditSeverity
from qa_engine.services.storage.interface import (
    EventSinkInterface,
    KeyValueStore,
    StorageConnectionError,
    StorageError,
)


KV_COLUMNS = ["key", "value", "updated_at"]

EVENT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet creation.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """Authenticate with the service account credentials."""
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StorageConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StorageConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise StorageConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            return spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
            return sheet

    def get_kv_sheet(self) -> gspread.Worksheet:
        """Get or create the key-value worksheet."""
        return self._get_or_create(self._settings.kv_sheet_name, KV_COLUMNS, rows=1000)

    def get_events_sheet(self) -> gspread.Worksheet:
        """Get or create the events worksheet."""
        return self._get_or_create(self._settings.events_sheet_name, EVENT_COLUMNS, rows=5000)


class GoogleSheetsKeyValueStore(KeyValueStore):
    """
    Key-value store backed by a two-column worksheet.

    Row 1 is the header; the key column is scanned to locate a row.
    Values are stored as raw strings (the engine stores JSON).

    Row indexes shift when a row is deleted, so every lookup and the write
    that uses its index happen under one lock.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._lock = threading.Lock()

    def _find_row(self, sheet: gspread.Worksheet, key: str) -> Optional[int]:
        keys = sheet.col_values(1)
        for index, existing in enumerate(keys[1:], start=2):
            if existing == key:
                return index
        return None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _get_sync(self, key: str) -> Optional[str]:
        sheet = self._client.get_kv_sheet()
        with self._lock:
            row_index = self._find_row(sheet, key)
            if row_index is None:
                return None
            row = sheet.row_values(row_index)
        return row[1] if len(row) > 1 else ""

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _set_sync(self, key: str, value: str) -> None:
        sheet = self._client.get_kv_sheet()
        updated_at = datetime.now(timezone.utc).isoformat()
        with self._lock:
            row_index = self._find_row(sheet, key)
            if row_index is None:
                sheet.append_row([key, value, updated_at], value_input_option="RAW")
            else:
                sheet.update(
                    range_name=f"A{row_index}:C{row_index}",
                    values=[[key, value, updated_at]],
                    value_input_option="RAW",
                )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _remove_sync(self, key: str) -> None:
        sheet = self._client.get_kv_sheet()
        with self._lock:
            row_index = self._find_row(sheet, key)
            if row_index is not None:
                sheet.delete_rows(row_index)

    def _list_keys_sync(self, prefix: str) -> list[str]:
        sheet = self._client.get_kv_sheet()
        with self._lock:
            keys = sheet.col_values(1)[1:]
        return [key for key in keys if key and key.startswith(prefix)]

    async def get(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {key}: {e}")

    async def set(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._set_sync, key, value)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write {key}: {e}")

    async def remove(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._remove_sync, key)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to remove {key}: {e}")

    async def list_keys(self, prefix: str = "") -> list[str]:
        try:
            return await asyncio.to_thread(self._list_keys_sync, prefix)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list keys: {e}")


class GoogleSheetsEventSink(EventSinkInterface):
    """
    Google Sheets implementation of the event sink.

    Events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            entity_type=safe_get(4) or None,
            entity_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _append_sync(self, row: list) -> None:
        sheet = self._client.get_events_sheet()
        sheet.append_row(row, value_input_option="RAW")

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            await asyncio.to_thread(self._append_sync, event.to_sheets_row())
            return True
        except Exception as e:
            raise StorageError(f"Failed to append event: {e}")

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        try:
            sheet = self._client.get_events_sheet()
            rows = (await asyncio.to_thread(sheet.get_all_values))[1:]
        except Exception as e:
            raise StorageError(f"Failed to read events: {e}")

        events = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, IndexError):
                # Hand-edited or truncated rows are skipped
                continue

        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
