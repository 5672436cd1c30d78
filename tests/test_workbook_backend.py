"""Tests for the local .xlsx backend."""

from __future__ import annotations

import threading
from pathlib import Path

import openpyxl
import pytest

from sheetops.adapters.base import BackendResponseError, BackendTransportError, SheetsBackend
from sheetops.adapters.workbook import WorkbookBackend, _parse_ref, _trim, split_range
from sheetops.config import SheetOpsConfig
from sheetops.contracts.operations import CellUpdate, RowDelete
from sheetops.engine.grid import state_to_grid
from sheetops.engine.session import SheetSession
from sheetops.io.fileops import FileLock

from conftest import SAMPLE_GRID

SHEET_ID = "budget-2024"


@pytest.fixture()
def workbook_backend(tmp_path: Path) -> WorkbookBackend:
    return WorkbookBackend(tmp_path, lock_timeout=0)


def test_satisfies_protocol(workbook_backend: WorkbookBackend):
    assert isinstance(workbook_backend, SheetsBackend)


class TestRefs:
    def test_parse_range(self):
        assert _parse_ref("A1:C10") == (1, 1, 10, 3)
        assert _parse_ref("$b$2") == (2, 2, 2, 2)

    def test_parse_invalid(self):
        with pytest.raises(ValueError):
            _parse_ref("nope")

    def test_split_range(self):
        assert split_range("'My Tab'!A1:C3", "Sheet1") == ("My Tab", "A1:C3")
        assert split_range("A1:C3", "Sheet1") == ("Sheet1", "A1:C3")

    def test_trim(self):
        assert _trim([["a", None, ""], [None], []]) == [["a"]]
        assert _trim([[], ["x"]]) == [[], ["x"]]


class TestReadWrite:
    async def test_round_trip(self, workbook_backend: WorkbookBackend):
        written = await workbook_backend.write_values(SHEET_ID, "Sheet1", SAMPLE_GRID, "user-1")
        assert written == 4
        assert workbook_backend.path_for(SHEET_ID).exists()
        grid = await workbook_backend.read_values(SHEET_ID, "Sheet1!A1:Z1000", "user-1")
        assert grid == SAMPLE_GRID

    async def test_rewrite_shrinks(self, workbook_backend: WorkbookBackend):
        await workbook_backend.write_values(SHEET_ID, "Sheet1", SAMPLE_GRID, "user-1")
        await workbook_backend.write_values(SHEET_ID, "Sheet1", [["Name"], ["Ann"]], "user-1")
        grid = await workbook_backend.read_values(SHEET_ID, "Sheet1!A1:Z1000", "user-1")
        assert grid == [["Name"], ["Ann"]]

    async def test_range_limits_read(self, workbook_backend: WorkbookBackend):
        await workbook_backend.write_values(SHEET_ID, "Sheet1", SAMPLE_GRID, "user-1")
        grid = await workbook_backend.read_values(SHEET_ID, "Sheet1!A1:B2", "user-1")
        assert grid == [["Name", "Email"], ["Alice Smith", "alice@example.com"]]

    async def test_range_without_tab_uses_default(self, workbook_backend: WorkbookBackend):
        await workbook_backend.write_values(SHEET_ID, "Sheet1", SAMPLE_GRID, "user-1")
        assert await workbook_backend.read_values(SHEET_ID, "A1:A1", "user-1") == [["Name"]]

    async def test_tab_order_kept(self, workbook_backend: WorkbookBackend):
        await workbook_backend.write_values(SHEET_ID, "Sheet1", SAMPLE_GRID, "user-1")
        await workbook_backend.write_values(SHEET_ID, "Q3", [["x"]], "user-1")
        await workbook_backend.write_values(SHEET_ID, "Sheet1", [["y"]], "user-1")
        tabs = await workbook_backend.list_tabs(SHEET_ID, "user-1")
        assert [(t.id, t.name) for t in tabs] == [(0, "Sheet1"), (1, "Q3")]

    async def test_numbers_read_as_strings(self, tmp_path: Path):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = "Sheet1"
        ws.append(["Item", "Qty"])
        ws.append(["Pen", 3])
        wb.save(tmp_path / f"{SHEET_ID}.xlsx")
        grid = await WorkbookBackend(tmp_path).read_values(SHEET_ID, "Sheet1!A1:Z10", "user-1")
        assert grid == [["Item", "Qty"], ["Pen", "3"]]


class TestErrors:
    async def test_missing_spreadsheet(self, workbook_backend: WorkbookBackend):
        with pytest.raises(BackendTransportError, match="not found"):
            await workbook_backend.read_values("missing-id", "Sheet1!A1:B2", "user-1")

    async def test_missing_tab(self, workbook_backend: WorkbookBackend):
        await workbook_backend.write_values(SHEET_ID, "Sheet1", SAMPLE_GRID, "user-1")
        with pytest.raises(BackendResponseError, match="Unable to parse range"):
            await workbook_backend.read_values(SHEET_ID, "Other!A1:B2", "user-1")

    async def test_corrupt_file(self, workbook_backend: WorkbookBackend):
        workbook_backend.path_for(SHEET_ID).write_bytes(b"not a zip file")
        with pytest.raises(BackendResponseError):
            await workbook_backend.read_values(SHEET_ID, "Sheet1!A1:B2", "user-1")

    async def test_locked_spreadsheet(self, workbook_backend: WorkbookBackend):
        with FileLock(workbook_backend.path_for(SHEET_ID)):
            with pytest.raises(BackendTransportError, match="locked"):
                await workbook_backend.write_values(SHEET_ID, "Sheet1", SAMPLE_GRID, "user-1")


class TestDiscovery:
    async def test_always_connected(self, workbook_backend: WorkbookBackend):
        status = await workbook_backend.check_connection("user-1", "googlesheets")
        assert status.connected and status.account_id == "local"

    async def test_list_spreadsheets(self, workbook_backend: WorkbookBackend):
        await workbook_backend.write_values("zeta-sheet", "Sheet1", [["a"]], "user-1")
        await workbook_backend.write_values("alpha-sheet", "Sheet1", [["a"]], "user-1")
        sheets = await workbook_backend.list_spreadsheets("user-1")
        assert [s.id for s in sheets] == ["alpha-sheet", "zeta-sheet"]

    async def test_list_spreadsheets_missing_root(self, tmp_path: Path):
        assert await WorkbookBackend(tmp_path / "nowhere").list_spreadsheets("user-1") == []

    async def test_create_spreadsheet(self, workbook_backend: WorkbookBackend):
        ref = await workbook_backend.create_spreadsheet("Q3 Budget", "user-1")
        assert ref.id.startswith("q3_budget-")
        assert ref.name == "Q3 Budget"
        path = workbook_backend.path_for(ref.id)
        assert ref.url == path.resolve().as_uri()
        assert [s.id for s in await workbook_backend.list_spreadsheets("user-1")] == [ref.id]
        assert [t.name for t in await workbook_backend.list_tabs(ref.id, "user-1")] == ["Sheet1"]
        wb = openpyxl.load_workbook(path)
        assert wb.properties.title == "Q3 Budget"

    async def test_created_spreadsheets_get_distinct_ids(self, workbook_backend: WorkbookBackend):
        first = await workbook_backend.create_spreadsheet("Budget", "user-1")
        second = await workbook_backend.create_spreadsheet("Budget", "user-1")
        assert first.id != second.id


async def test_file_work_runs_off_the_event_loop(workbook_backend: WorkbookBackend, monkeypatch):
    loop_thread = threading.get_ident()
    seen: list[int] = []
    write, read = workbook_backend._write, workbook_backend._read

    def recording(fn):
        def wrapper(*args):
            seen.append(threading.get_ident())
            return fn(*args)
        return wrapper

    monkeypatch.setattr(workbook_backend, "_write", recording(write))
    monkeypatch.setattr(workbook_backend, "_read", recording(read))
    await workbook_backend.write_values(SHEET_ID, "Sheet1", SAMPLE_GRID, "user-1")
    assert await workbook_backend.read_values(SHEET_ID, "Sheet1!A1:C4", "user-1") == SAMPLE_GRID
    assert len(seen) == 2
    assert loop_thread not in seen


async def test_session_round_trip(workbook_backend: WorkbookBackend):
    await workbook_backend.write_values(SHEET_ID, "Sheet1", SAMPLE_GRID, "user-1")
    session = SheetSession(
        workbook_backend,
        config=SheetOpsConfig(auth_mode="service"),
        spreadsheet_id=SHEET_ID,
    )
    assert (await session.pull()).ok
    session.propose([
        CellUpdate(id="o1", row_id="r2", column_id="amount", new_value="999"),
        RowDelete(id="o2", row_id="r1"),
    ])
    env = await session.push()
    assert env.ok, env.errors
    assert env.result.rows_written == 3

    fresh = SheetSession(workbook_backend, config=SheetOpsConfig(auth_mode="service"), spreadsheet_id=SHEET_ID)
    assert (await fresh.pull()).ok
    assert [r.cells["amount"] for r in fresh.base.rows] == ["999", "2300"]
    assert state_to_grid(fresh.base) == state_to_grid(session.base)
