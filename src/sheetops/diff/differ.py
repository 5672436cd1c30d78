"""Diff logic: compare a base sheet state against its preview."""

from __future__ import annotations

from typing import Any

from sheetops.contracts.common import ChangeRecord
from sheetops.contracts.operations import CellUpdate, EditOperation, Sort
from sheetops.contracts.state import SheetState
from sheetops.engine.grid import cell_ref


def _cell_op_ids(ops: list[EditOperation]) -> dict[tuple[str, str], str]:
    """Last cell_update id per (row, column)."""
    owners: dict[tuple[str, str], str] = {}
    for op in ops:
        if isinstance(op, CellUpdate):
            owners[(op.row_id, op.column_id)] = op.id
    return owners


def diff_states(
    base: SheetState,
    preview: SheetState,
    ops: list[EditOperation] | None = None,
) -> list[ChangeRecord]:
    """Compare two states by row and column id.

    Cell refs point at the cell's position in ``preview``.  Changes to
    rows or columns that exist on only one side are reported once for
    the row/column, not per cell.
    """
    ops = ops or []
    owners = _cell_op_ids(ops)
    changes: list[ChangeRecord] = []

    base_cols = {c.id: c for c in base.columns}
    preview_cols = {c.id: c for c in preview.columns}
    for col in base.columns:
        if col.id not in preview_cols:
            changes.append(ChangeRecord(
                type="column.removed", target=col.id, before=col.label,
                impact={"cells": len(base.rows)},
            ))
    for col in preview.columns:
        if col.id not in base_cols:
            changes.append(ChangeRecord(
                type="column.added", target=col.id, after=col.label,
                impact={"cells": len(preview.rows)},
            ))

    base_rows = {r.id: r for r in base.rows}
    preview_rows = {r.id: r for r in preview.rows}
    for row in base.rows:
        if row.id not in preview_rows:
            changes.append(ChangeRecord(
                type="row.removed", target=row.id, before=dict(row.cells),
                impact={"cells": len(row.cells)},
            ))

    shared_cols = [(idx, c.id) for idx, c in enumerate(preview.columns) if c.id in base_cols]
    for row_idx, row in enumerate(preview.rows):
        old = base_rows.get(row.id)
        if old is None:
            changes.append(ChangeRecord(
                type="row.added", target=row.id, after=dict(row.cells),
                impact={"cells": len(row.cells)},
            ))
            continue
        for col_idx, col_id in shared_cols:
            before, after = old.get(col_id), row.get(col_id)
            if before == after:
                continue
            changes.append(ChangeRecord(
                op_id=owners.get((row.id, col_id)),
                type="cell.modified",
                target=cell_ref(row_idx, col_idx),
                before=before,
                after=after,
                impact={"cells": 1},
            ))

    base_order = [r.id for r in base.rows if r.id in preview_rows]
    preview_order = [r.id for r in preview.rows if r.id in base_rows]
    if base_order != preview_order:
        sort_op = next((op for op in reversed(ops) if isinstance(op, Sort)), None)
        changes.append(ChangeRecord(
            op_id=sort_op.id if sort_op else None,
            type="rows.reordered",
            target=sort_op.column_id if sort_op else "",
            before=base_order,
            after=preview_order,
            impact={"rows": len(preview_order)},
        ))
    return changes


def diff_summary(changes: list[ChangeRecord]) -> dict[str, Any]:
    cells = sum(1 for c in changes if c.type == "cell.modified")
    return {
        "cells_modified": cells,
        "rows_added": sum(1 for c in changes if c.type == "row.added"),
        "rows_removed": sum(1 for c in changes if c.type == "row.removed"),
        "columns_added": sum(1 for c in changes if c.type == "column.added"),
        "columns_removed": sum(1 for c in changes if c.type == "column.removed"),
        "reordered": any(c.type == "rows.reordered" for c in changes),
        "identical": not changes,
    }
