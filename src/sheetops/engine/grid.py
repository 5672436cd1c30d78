"""Conversions between 2D string grids and SheetState."""

from __future__ import annotations

import re
from typing import Any

from openpyxl.utils import column_index_from_string, get_column_letter

from sheetops.contracts.sheet import Column, Row
from sheetops.contracts.state import SheetState

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_LETTERS = re.compile(r"^[A-Z]{1,3}$")


def slugify(value: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to ``_``, trim underscores."""
    return _NON_ALNUM.sub("_", value.strip().lower()).strip("_")


def column_letter(index: int) -> str:
    """Zero-based column index -> spreadsheet letter (0 -> A, 26 -> AA)."""
    return get_column_letter(index + 1)


def column_index(letter: str) -> int:
    """Spreadsheet letter -> zero-based index (A -> 0, AA -> 26).

    Raises ValueError for anything that is not 1-3 letters.
    """
    letter = letter.strip().upper()
    if not _LETTERS.match(letter):
        raise ValueError(f"Invalid column letter: {letter!r}")
    return column_index_from_string(letter) - 1


def columns_from_header(header: list[Any]) -> list[Column]:
    """Build columns from a header row.

    Blank labels and slugs colliding with an earlier id fall back to
    ``col_<n>`` (1-based position).
    """
    columns: list[Column] = []
    seen: set[str] = set()
    for idx, raw in enumerate(header):
        label = "" if raw is None else str(raw)
        col_id = slugify(label)
        if not col_id or col_id in seen:
            col_id = f"col_{idx + 1}"
        seen.add(col_id)
        columns.append(Column(id=col_id, label=label or f"Column {idx + 1}"))
    return columns


def grid_to_state(values: list[list[Any]]) -> SheetState:
    """First row is the header; following rows become ``r1``, ``r2``, ..."""
    if not values:
        return SheetState()
    columns = columns_from_header(values[0])
    rows: list[Row] = []
    for row_idx, raw_row in enumerate(values[1:]):
        cells: dict[str, str] = {}
        for col_idx, col in enumerate(columns):
            val = raw_row[col_idx] if col_idx < len(raw_row) else None
            cells[col.id] = "" if val is None else str(val)
        rows.append(Row(id=f"r{row_idx + 1}", cells=cells))
    return SheetState(columns=columns, rows=rows)


def state_to_grid(state: SheetState) -> list[list[str]]:
    """Header of column labels plus one row per Row, in column order."""
    grid = [[col.label for col in state.columns]]
    for row in state.rows:
        grid.append([row.get(col.id) for col in state.columns])
    return grid


def grid_range(tab: str, grid: list[list[str]]) -> str:
    """A1 range covering ``grid`` on ``tab``, e.g. ``Sheet1!A1:C4``."""
    width = max((len(r) for r in grid), default=0) or 1
    height = len(grid) or 1
    return f"{tab}!A1:{get_column_letter(width)}{height}"


def cell_ref(row_index: int, col_index: int) -> str:
    """Zero-based data row/column -> A1 ref below the header (0, 0 -> A2)."""
    return f"{column_letter(col_index)}{row_index + 2}"
