"""Manual editing tools.

Each tool inspects the current (preview) state and returns the operations
it would propose; nothing here mutates state.  Callers hand the result to
``SheetSession.propose``.
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from sheetops.contracts.operations import (
    AddRow,
    CellUpdate,
    ColumnAdd,
    ColumnDelete,
    EditOperation,
    RowDelete,
    Sort,
    SortDirection,
    new_op_id,
    now_ms,
)
from sheetops.contracts.responses import ColumnSummary
from sheetops.contracts.sheet import Column, Row
from sheetops.contracts.state import SheetState
from sheetops.engine.grid import slugify

SUMMARY_LABEL = "Summary"


def _unused_id(base: str, taken: set[str]) -> str:
    if base not in taken:
        return base
    n = 2
    while f"{base}_{n}" in taken:
        n += 1
    return f"{base}_{n}"


def add_column(label: str, columns: Sequence[Column] = ()) -> list[EditOperation]:
    """Column op for ``label``; the slug gets a ``_2``/``_3`` suffix when already taken."""
    label = label.strip()
    if not label:
        return []
    column_id = _unused_id(slugify(label) or f"col_{now_ms()}", {c.id for c in columns})
    return [ColumnAdd(id=new_op_id("col-add"), column_id=column_id, column_label=label)]


def delete_column(column_id: str) -> list[EditOperation]:
    if not column_id:
        return []
    return [ColumnDelete(id=new_op_id("col-del"), column_id=column_id)]


def _next_row_id(rows: Sequence[Row]) -> str:
    taken = {r.id for r in rows}
    numbers = [int(rid[1:]) for rid in taken if rid[:1] == "r" and rid[1:].isdigit()]
    n = max(numbers, default=0) + 1
    while f"r{n}" in taken:
        n += 1
    return f"r{n}"


def add_row(columns: list[Column], row_id: str | None = None, *, rows: Sequence[Row] = ()) -> list[EditOperation]:
    """Empty row with a cell for every column; id defaults to one past the highest ``r<n>``."""
    row = Row(id=row_id or _next_row_id(rows), cells={c.id: "" for c in columns})
    return [AddRow(id=new_op_id("row-add"), row=row)]


def delete_row(row_id: str) -> list[EditOperation]:
    if not row_id:
        return []
    return [RowDelete(id=new_op_id("row-del"), row_id=row_id)]


def sort_rows(column_id: str, direction: SortDirection = "asc") -> list[EditOperation]:
    if not column_id:
        return []
    return [Sort(id=new_op_id("sort"), column_id=column_id, direction=direction)]


def remove_duplicates(state: SheetState, column_id: str) -> list[EditOperation]:
    """Delete every row whose trimmed value in ``column_id`` was already seen above it."""
    stamp = now_ms()
    seen: set[str] = set()
    ops: list[EditOperation] = []
    for row in state.rows:
        value = row.get(column_id).strip()
        if not value:
            continue
        if value in seen:
            ops.append(RowDelete(id=new_op_id("dedupe", row.id, stamp=stamp), row_id=row.id))
        else:
            seen.add(value)
    return ops


def normalize_emails(state: SheetState, column_id: str) -> list[EditOperation]:
    stamp = now_ms()
    ops: list[EditOperation] = []
    for row in state.rows:
        value = row.get(column_id)
        lowered = value.lower()
        if value and value != lowered:
            ops.append(CellUpdate(
                id=new_op_id(row.id, stamp=stamp),
                row_id=row.id,
                column_id=column_id,
                old_value=value,
                new_value=lowered,
            ))
    return ops


def filter_rows(state: SheetState, column_id: str, keep_value: str) -> list[EditOperation]:
    """Delete rows whose trimmed value differs from ``keep_value``; blank filter -> nothing."""
    target = keep_value.strip()
    if not column_id or not target:
        return []
    stamp = now_ms()
    return [
        RowDelete(id=new_op_id("filter", row.id, stamp=stamp), row_id=row.id)
        for row in state.rows
        if row.get(column_id).strip() != target
    ]


def _numeric(value: str) -> float | None:
    try:
        number = float(value.strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def summarize_column(state: SheetState, column_id: str) -> ColumnSummary:
    values = [n for n in (_numeric(r.get(column_id)) for r in state.rows) if n is not None]
    total = sum(values)
    return ColumnSummary(
        column_id=column_id,
        count=len(values),
        total=total,
        average=total / len(values) if values else 0.0,
    )


def summary_row(state: SheetState, column_id: str) -> list[EditOperation]:
    """Append a row labelled ``Summary`` in the first column with the column total.

    When ``column_id`` is itself the first column the total wins.
    """
    if state.column(column_id) is None:
        return []
    summary = summarize_column(state, column_id)
    stamp = now_ms()
    cells: dict[str, str] = {}
    if state.columns:
        cells[state.columns[0].id] = SUMMARY_LABEL
    cells[column_id] = f"{summary.total:.2f}"
    return [AddRow(id=new_op_id("summary", stamp=stamp), row=Row(id=f"summary-{stamp}", cells=cells))]
