"""Local ``.xlsx`` backend: one workbook per spreadsheet id under a root directory.

Useful offline and in tests.  Reads open the workbook read-only; writes
take a sidecar lock, rewrite the tab, and replace the file atomically.
"""

from __future__ import annotations

import asyncio
import io
import logging
import re
import uuid
import zipfile
from pathlib import Path
from typing import Any

import openpyxl
import portalocker
from openpyxl.utils import column_index_from_string
from openpyxl.utils.exceptions import InvalidFileException

from sheetops.adapters.base import BackendResponseError, BackendTransportError
from sheetops.adapters.broker import normalize_grid
from sheetops.contracts.responses import (
    ConnectionLink,
    ConnectionStatus,
    SheetTab,
    SpreadsheetRef,
)
from sheetops.engine.grid import slugify
from sheetops.io.fileops import FileLock, atomic_write

logger = logging.getLogger(__name__)

LOCAL_ACCOUNT_ID = "local"
_CELL = re.compile(r"([A-Z]+)(\d+)")


def _parse_ref(ref: str) -> tuple[int, int, int, int]:
    """Parse ``A1:B2`` into (min_row, min_col, max_row, max_col), 1-based."""
    parts = ref.replace("$", "").upper().split(":")
    m1 = _CELL.fullmatch(parts[0])
    if not m1:
        raise ValueError(f"Invalid ref: {ref}")
    min_col = column_index_from_string(m1.group(1))
    min_row = int(m1.group(2))
    if len(parts) == 2:
        m2 = _CELL.fullmatch(parts[1])
        if not m2:
            raise ValueError(f"Invalid ref: {ref}")
        return min_row, min_col, int(m2.group(2)), column_index_from_string(m2.group(1))
    return min_row, min_col, min_row, min_col


def split_range(a1_range: str, default_tab: str) -> tuple[str, str]:
    """``'My Tab'!A1:C3`` -> (``My Tab``, ``A1:C3``)."""
    if "!" not in a1_range:
        return default_tab, a1_range
    tab, ref = a1_range.rsplit("!", 1)
    return tab.strip("'"), ref


def _trim(rows: list[list[Any]]) -> list[list[Any]]:
    """Drop trailing empty cells per row and trailing empty rows."""
    trimmed: list[list[Any]] = []
    for row in rows:
        row = list(row)
        while row and row[-1] in (None, ""):
            row.pop()
        trimmed.append(row)
    while trimmed and not trimmed[-1]:
        trimmed.pop()
    return trimmed


class WorkbookBackend:
    """Spreadsheets stored as ``<root>/<spreadsheet_id>.xlsx``.

    openpyxl and the file lock block, so every call runs in a worker thread.
    """

    def __init__(self, root: str | Path, *, default_tab: str = "Sheet1", lock_timeout: float = 5.0) -> None:
        self.root = Path(root)
        self.default_tab = default_tab
        self.lock_timeout = lock_timeout

    def path_for(self, spreadsheet_id: str) -> Path:
        return self.root / f"{spreadsheet_id}.xlsx"

    def _load(self, spreadsheet_id: str, *, read_only: bool) -> openpyxl.Workbook:
        path = self.path_for(spreadsheet_id)
        if not path.exists():
            raise BackendTransportError(f"Spreadsheet not found: {spreadsheet_id}", details=str(path))
        try:
            return openpyxl.load_workbook(str(path), read_only=read_only, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, OSError, KeyError, ValueError) as exc:
            raise BackendResponseError(f"Cannot read workbook: {path.name}", details=str(exc)) from exc

    async def check_connection(self, user_id: str, app: str) -> ConnectionStatus:
        return ConnectionStatus(connected=True, account_id=LOCAL_ACCOUNT_ID)

    async def initiate_connection(self, user_id: str, app: str, redirect_url: str) -> ConnectionLink:
        return ConnectionLink(redirect_url=redirect_url, connection_id=LOCAL_ACCOUNT_ID)

    def _list_spreadsheets(self) -> list[SpreadsheetRef]:
        if not self.root.is_dir():
            return []
        return [SpreadsheetRef(id=p.stem, name=p.stem) for p in sorted(self.root.glob("*.xlsx"))]

    async def list_spreadsheets(self, user_id: str, account_id: str | None = None) -> list[SpreadsheetRef]:
        return await asyncio.to_thread(self._list_spreadsheets)

    def _list_tabs(self, spreadsheet_id: str) -> list[SheetTab]:
        wb = self._load(spreadsheet_id, read_only=True)
        try:
            return [SheetTab(id=idx, name=name) for idx, name in enumerate(wb.sheetnames)]
        finally:
            wb.close()

    async def list_tabs(self, spreadsheet_id: str, user_id: str, account_id: str | None = None) -> list[SheetTab]:
        return await asyncio.to_thread(self._list_tabs, spreadsheet_id)

    def _create(self, title: str) -> SpreadsheetRef:
        spreadsheet_id = f"{slugify(title) or 'sheet'}-{uuid.uuid4().hex[:8]}"
        path = self.path_for(spreadsheet_id)
        wb = openpyxl.Workbook()
        wb.active.title = self.default_tab
        wb.properties.title = title
        buf = io.BytesIO()
        wb.save(buf)
        try:
            with FileLock(path, timeout=self.lock_timeout):
                atomic_write(path, buf.getvalue())
        except (portalocker.LockException, OSError) as exc:
            raise BackendTransportError(f"Cannot create spreadsheet: {title}", details=str(exc)) from exc
        logger.info("Created workbook %s for %r", path.name, title)
        return SpreadsheetRef(id=spreadsheet_id, name=title, url=path.resolve().as_uri())

    async def create_spreadsheet(
        self, title: str, user_id: str, account_id: str | None = None,
    ) -> SpreadsheetRef:
        return await asyncio.to_thread(self._create, title)

    def _read(self, spreadsheet_id: str, range: str) -> list[list[str]]:
        tab, ref = split_range(range, self.default_tab)
        try:
            min_row, min_col, max_row, max_col = _parse_ref(ref)
        except ValueError as exc:
            raise BackendResponseError(str(exc)) from exc
        wb = self._load(spreadsheet_id, read_only=True)
        try:
            if tab not in wb.sheetnames:
                raise BackendResponseError(f"Unable to parse range: {range}")
            ws = wb[tab]
            rows = [
                list(r)
                for r in ws.iter_rows(
                    min_row=min_row, max_row=max_row, min_col=min_col, max_col=max_col, values_only=True,
                )
            ]
        finally:
            wb.close()
        return normalize_grid(_trim(rows))

    async def read_values(
        self, spreadsheet_id: str, range: str, user_id: str, account_id: str | None = None,
    ) -> list[list[str]]:
        return await asyncio.to_thread(self._read, spreadsheet_id, range)

    def _write(self, spreadsheet_id: str, tab: str, grid: list[list[str]]) -> int:
        path = self.path_for(spreadsheet_id)
        try:
            with FileLock(path, timeout=self.lock_timeout):
                if path.exists():
                    wb = self._load(spreadsheet_id, read_only=False)
                else:
                    wb = openpyxl.Workbook()
                    wb.active.title = tab
                if tab in wb.sheetnames:
                    position = wb.sheetnames.index(tab)
                    wb.remove(wb[tab])
                    ws = wb.create_sheet(tab, position)
                else:
                    ws = wb.create_sheet(tab)
                for row in grid:
                    ws.append(list(row))
                buf = io.BytesIO()
                wb.save(buf)
                atomic_write(path, buf.getvalue())
        except portalocker.LockException as exc:
            raise BackendTransportError(f"Spreadsheet is locked: {spreadsheet_id}", details=str(exc)) from exc
        logger.debug("Wrote %d rows to %s!%s", len(grid), path.name, tab)
        return len(grid)

    async def write_values(
        self,
        spreadsheet_id: str,
        tab: str,
        grid: list[list[str]],
        user_id: str,
        account_id: str | None = None,
    ) -> int:
        return await asyncio.to_thread(self._write, spreadsheet_id, tab, list(grid))
