"""
Tests for the Google Sheets key-value store.

A list-backed worksheet stands in for gspread; no request leaves the process.
"""

import asyncio
import re
import threading
from typing import Optional

from conftest import run
from qa_engine.services.storage.google_sheets import KV_COLUMNS, GoogleSheetsKeyValueStore


class FakeWorksheet:
    """Rows as lists, 1-indexed like a sheet. Row 1 is the header."""

    def __init__(self, rows=()):
        self.rows = [list(KV_COLUMNS)] + [list(row) for row in rows]
        self.pause_next_lookup: Optional[threading.Event] = None

    def keys(self) -> list[str]:
        return [row[0] for row in self.rows[1:]]

    def col_values(self, col):
        values = [row[col - 1] for row in self.rows]
        if self.pause_next_lookup is not None:
            gate, self.pause_next_lookup = self.pause_next_lookup, None
            gate.wait(timeout=2)
        return values

    def row_values(self, row_index):
        return list(self.rows[row_index - 1])

    def append_row(self, values, value_input_option=None):
        self.rows.append(list(values))

    def update(self, range_name, values, value_input_option=None):
        row_index = int(re.match(r"A(\d+):", range_name).group(1))
        self.rows[row_index - 1] = list(values[0])

    def delete_rows(self, row_index):
        del self.rows[row_index - 1]


class FakeSheetsClient:
    def __init__(self, sheet: FakeWorksheet):
        self.sheet = sheet

    def get_kv_sheet(self):
        return self.sheet


def make_store(rows=()) -> tuple[GoogleSheetsKeyValueStore, FakeWorksheet]:
    sheet = FakeWorksheet(rows)
    return GoogleSheetsKeyValueStore(FakeSheetsClient(sheet)), sheet


class TestKeyValueStore:
    """Tests for GoogleSheetsKeyValueStore."""

    def test_set_appends_then_updates_in_place(self):
        store, sheet = make_store()

        async def scenario():
            await store.set("qa_budget_state", '{"used": 1}')
            await store.set("qa_budget_state", '{"used": 2}')
            return await store.get("qa_budget_state")

        assert run(scenario()) == '{"used": 2}'
        assert sheet.keys() == ["qa_budget_state"]

    def test_missing_key(self):
        store, _ = make_store()
        assert run(store.get("absent")) is None

    def test_remove_and_list_keys(self):
        store, sheet = make_store([
            ["qa_result_cache_a", "1", ""],
            ["qa_result_cache_b", "2", ""],
            ["qa_budget_state", "3", ""],
        ])

        async def scenario():
            await store.remove("qa_result_cache_a")
            await store.remove("never-stored")
            return await store.list_keys("qa_result_cache_")

        assert run(scenario()) == ["qa_result_cache_b"]
        assert sheet.keys() == ["qa_result_cache_b", "qa_budget_state"]

    def test_concurrent_remove_does_not_shift_a_pending_write(self):
        """A delete cannot land between another write's row lookup and its update."""
        store, sheet = make_store([
            ["k1", "one", ""],
            ["k2", "two", ""],
            ["k3", "three", ""],
            ["k4", "four", ""],
        ])
        gate = threading.Event()
        sheet.pause_next_lookup = gate

        async def open_gate():
            await asyncio.sleep(0.05)
            gate.set()

        async def scenario():
            write = asyncio.create_task(store.set("k3", "new"))
            await asyncio.sleep(0.01)
            await asyncio.gather(write, store.remove("k1"), open_gate())
            return await store.get("k3"), await store.get("k4")

        k3, k4 = run(scenario())
        assert sheet.keys() == ["k2", "k3", "k4"]
        assert k3 == "new"
        assert k4 == "four"
