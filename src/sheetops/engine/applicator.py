"""Apply edit operations to a SheetState.

``apply_operations`` is pure: it never mutates its input.  The column and
row lists are rebuilt, and a row's cell map is copied before it is
written, so callers may keep using the original state.

Dangling references never raise.  An operation naming a column or row
that does not exist degrades to a no-op, except ``cell_update`` on an
unknown row, which materializes the row (see ``_cell_update``).
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import assert_never

from sheetops.contracts.operations import (
    AddRow,
    CellUpdate,
    ColumnAdd,
    ColumnDelete,
    EditOperation,
    RowDelete,
    Sort,
)
from sheetops.contracts.sheet import Column, Row
from sheetops.contracts.state import SheetState

_DIGITS = re.compile(r"(\d+)")


def natural_key(value: str) -> tuple[tuple[int, int, str], ...]:
    """Collation key: digit runs compare as numbers, text case-insensitively.

    Digit runs sort before text runs, so ``"2" < "10" < "a"``.
    """
    key: list[tuple[int, int, str]] = []
    for part in _DIGITS.split(value.strip()):
        if not part:
            continue
        if part.isdigit():
            key.append((0, int(part), ""))
        else:
            key.append((1, 0, part.casefold()))
    return tuple(key)


class _Accumulator:
    """Working copy of columns/rows for one apply pass."""

    def __init__(self, state: SheetState) -> None:
        self.columns: list[Column] = list(state.columns)
        self.rows: list[Row] = list(state.rows)
        self.deleted_rows: set[str] = set()

    def index_of_row(self, row_id: str) -> int | None:
        for i, row in enumerate(self.rows):
            if row.id == row_id:
                return i
        return None


def _cell_update(acc: _Accumulator, op: CellUpdate) -> None:
    # Unknown rows are materialized with empty cells for every current
    # column.  Rows deleted earlier in the same pass stay deleted.
    idx = acc.index_of_row(op.row_id)
    if idx is None:
        if op.row_id in acc.deleted_rows:
            return
        acc.rows.append(Row(id=op.row_id, cells={c.id: "" for c in acc.columns}))
        idx = len(acc.rows) - 1
    row = acc.rows[idx]
    cells = dict(row.cells)
    cells[op.column_id] = op.new_value or ""
    acc.rows[idx] = row.model_copy(update={"cells": cells})


def _column_add(acc: _Accumulator, op: ColumnAdd) -> None:
    # Existing ids are left alone; values already recorded under the id are kept.
    if any(c.id == op.column_id for c in acc.columns):
        return
    acc.columns.append(Column(id=op.column_id, label=op.column_label or op.column_id))
    acc.rows = [
        row.model_copy(update={"cells": {op.column_id: "", **row.cells}})
        for row in acc.rows
    ]


def _column_delete(acc: _Accumulator, op: ColumnDelete) -> None:
    acc.columns = [c for c in acc.columns if c.id != op.column_id]
    rows: list[Row] = []
    for row in acc.rows:
        if op.column_id in row.cells:
            cells = {k: v for k, v in row.cells.items() if k != op.column_id}
            row = row.model_copy(update={"cells": cells})
        rows.append(row)
    acc.rows = rows


def _add_row(acc: _Accumulator, op: AddRow) -> None:
    acc.rows.append(op.row.model_copy(deep=True))
    acc.deleted_rows.discard(op.row.id)


def _row_delete(acc: _Accumulator, op: RowDelete) -> None:
    before = len(acc.rows)
    acc.rows = [r for r in acc.rows if r.id != op.row_id]
    if len(acc.rows) != before:
        acc.deleted_rows.add(op.row_id)


def _sort(acc: _Accumulator, op: Sort) -> None:
    # sorted() is stable in both directions: ties keep original order.
    acc.rows = sorted(
        acc.rows,
        key=lambda row: natural_key(row.get(op.column_id)),
        reverse=op.direction == "desc",
    )


def apply_operation(acc: _Accumulator, op: EditOperation) -> None:
    if isinstance(op, CellUpdate):
        _cell_update(acc, op)
    elif isinstance(op, ColumnAdd):
        _column_add(acc, op)
    elif isinstance(op, ColumnDelete):
        _column_delete(acc, op)
    elif isinstance(op, AddRow):
        _add_row(acc, op)
    elif isinstance(op, RowDelete):
        _row_delete(acc, op)
    elif isinstance(op, Sort):
        _sort(acc, op)
    else:
        assert_never(op)


def apply_operations(state: SheetState, ops: Iterable[EditOperation]) -> SheetState:
    """Return a new state with ``ops`` applied in order.

    ``pending_ops`` of the input is carried over unchanged.
    """
    acc = _Accumulator(state)
    for op in ops:
        apply_operation(acc, op)
    return state.model_copy(update={"columns": acc.columns, "rows": acc.rows})


def preview_state(base: SheetState, pending: Iterable[EditOperation]) -> SheetState:
    """``apply(base, pending)`` with the pending list attached."""
    pending = list(pending)
    return apply_operations(base, pending).model_copy(update={"pending_ops": pending})
