"""Convert free-form agent replies into edit operations.

Strategies, first success wins:

1. the first fenced ```json block, ``{"operations": [...]}`` shape;
2. the same block as a bare array (legacy shape);
3. the text heuristic ``delete row N``.

Nothing here raises on bad input; an unusable reply yields ``[]``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from sheetops.contracts.operations import (
    OPERATION_TYPES,
    CellUpdate,
    EditOperation,
    RowDelete,
    Sort,
    new_op_id,
    now_ms,
    parse_operation,
)
from sheetops.contracts.sheet import Column, Row
from sheetops.engine.grid import column_index, column_letter
from sheetops.validation.validators import infer_column_type

logger = logging.getLogger(__name__)

JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)```")
DELETE_ROW = re.compile(r"delete\s+row\s+(\d+)", re.IGNORECASE)

CONTEXT_ROW_LIMIT = 10
CONTEXT_NOTE = "Row indices are 1-based. Use rowIndex value when specifying row in operations."


def extract_json_block(text: str) -> str | None:
    """Body of the first fenced JSON block, or None."""
    m = JSON_FENCE.search(text or "")
    return m.group(1) if m else None


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _column_id_at(columns: list[Column], index: int) -> str:
    if 0 <= index < len(columns):
        return columns[index].id
    return f"col_{index}"


def _column_id_for_letter(columns: list[Column], letter: Any) -> str | None:
    try:
        return _column_id_at(columns, column_index(_text(letter)))
    except ValueError:
        return None


def _row_id(row: Any) -> str | None:
    try:
        return f"r{int(row)}"
    except (TypeError, ValueError, OverflowError):
        return None


def _insert_ops(
    values: list[Any], columns: list[Column], row_id: str, stamp: int, idx: int,
) -> list[EditOperation]:
    return [
        CellUpdate(
            id=new_op_id("insert", idx, col_idx, stamp=stamp),
            row_id=row_id,
            column_id=_column_id_at(columns, col_idx),
            new_value=_text(val),
            author="agent",
        )
        for col_idx, val in enumerate(values)
    ]


def _map_current(
    entry: dict[str, Any], idx: int, columns: list[Column], stamp: int,
) -> list[EditOperation]:
    """Map one entry of the ``operations`` array."""
    op_type = entry.get("type")

    if op_type == "cell_update":
        column_id = _column_id_for_letter(columns, entry.get("column"))
        row_id = _row_id(entry.get("row"))
        if column_id is None or row_id is None:
            return []
        return [CellUpdate(
            id=new_op_id(idx, stamp=stamp),
            row_id=row_id,
            column_id=column_id,
            new_value=_text(entry.get("value")),
            author="agent",
        )]

    if op_type == "row_insert":
        values = entry.get("values")
        if not isinstance(values, list):
            return []
        return _insert_ops(values, columns, f"r-new-{stamp}-{idx}", stamp, idx)

    if op_type == "row_delete":
        row_id = _row_id(entry.get("row"))
        if row_id is None:
            return []
        return [RowDelete(id=new_op_id("del", idx, stamp=stamp), row_id=row_id, author="agent")]

    if op_type == "sort":
        sorted_data = entry.get("sorted_data")
        if isinstance(sorted_data, list):
            # Full-grid rewrite rather than a structural sort.
            ops: list[EditOperation] = []
            for row_idx, row_values in enumerate(sorted_data):
                if not isinstance(row_values, list):
                    continue
                for col_idx, col in enumerate(columns):
                    ops.append(CellUpdate(
                        id=new_op_id("sort", row_idx, col_idx, stamp=stamp),
                        row_id=f"r{row_idx + 1}",
                        column_id=col.id,
                        new_value=_text(row_values[col_idx]) if col_idx < len(row_values) else "",
                        author="agent",
                    ))
            return ops
        column_id = _column_id_for_letter(columns, entry.get("column") or "A")
        if column_id is None:
            return []
        direction = entry.get("direction") if entry.get("direction") in ("asc", "desc") else "asc"
        return [Sort(
            id=new_op_id("sort", idx, stamp=stamp),
            column_id=column_id,
            direction=direction,
            author="agent",
        )]

    return []


def _map_legacy(
    entry: dict[str, Any], idx: int, columns: list[Column], stamp: int,
) -> list[EditOperation]:
    """Map one entry of a bare-array reply; ids pass through as given."""
    op_type = entry.get("type") or "cell_update"

    if op_type == "row_insert":
        values = entry.get("values")
        if not isinstance(values, list):
            return []
        return _insert_ops(values, columns, f"r-inserted-{stamp}-{idx}", stamp, idx)

    if op_type not in OPERATION_TYPES:
        return []
    data = {k: v for k, v in entry.items() if v is not None}
    data.update(type=op_type, id=new_op_id(idx, stamp=stamp), author="agent")
    for key in ("oldValue", "newValue"):
        if key in data:
            data[key] = _text(data[key])
    try:
        return [parse_operation(data)]
    except ValidationError as exc:
        logger.debug("Dropping legacy agent operation %s: %s", idx, exc)
        return []


def _fallback_deletes(text: str, rows: list[Row], stamp: int) -> list[EditOperation]:
    ops: list[EditOperation] = []
    for idx, m in enumerate(DELETE_ROW.finditer(text)):
        n = int(m.group(1))
        if 1 <= n <= len(rows):
            ops.append(RowDelete(
                id=new_op_id("del", idx, stamp=stamp),
                row_id=rows[n - 1].id,
                author="agent",
            ))
    return ops


def parse_agent_response(
    text: str,
    columns: list[Column],
    rows: list[Row],
) -> list[EditOperation]:
    """Turn an agent reply into operations against the current sheet."""
    stamp = now_ms()
    block = extract_json_block(text)
    if block is not None:
        try:
            parsed = json.loads(block)
        except json.JSONDecodeError as exc:
            logger.warning("Agent reply carried unparsable JSON: %s", exc)
        else:
            if isinstance(parsed, dict) and isinstance(parsed.get("operations"), list):
                ops: list[EditOperation] = []
                for idx, entry in enumerate(parsed["operations"]):
                    if isinstance(entry, dict):
                        ops.extend(_map_current(entry, idx, columns, stamp))
                return ops
            if isinstance(parsed, list):
                ops = []
                for idx, entry in enumerate(parsed):
                    if isinstance(entry, dict):
                        ops.extend(_map_legacy(entry, idx, columns, stamp))
                return ops
    return _fallback_deletes(text or "", rows, stamp)


def parse_connection_confirmation(text: str) -> bool:
    """True when the reply's JSON block reports ``CONNECTED`` and confirmed."""
    block = extract_json_block(text)
    if block is None:
        return False
    try:
        parsed = json.loads(block)
    except json.JSONDecodeError:
        return False
    return (
        isinstance(parsed, dict)
        and parsed.get("status") == "CONNECTED"
        and parsed.get("confirmed") is True
    )


def build_context_message(
    *,
    spreadsheet_id: str,
    columns: list[Column],
    rows: list[Row],
    spreadsheet_name: str | None = None,
    tab_name: str = "Sheet1",
    account_id: str = "anonymous",
) -> dict[str, Any]:
    """CONTEXT payload sent to the agent when a sheet is connected."""
    return {
        "type": "CONTEXT",
        "spreadsheetId": spreadsheet_id,
        "spreadsheetName": spreadsheet_name or f"Sheet {spreadsheet_id[:8]}...",
        "tabName": tab_name,
        "connectedAccountId": account_id,
        "columns": [
            {"letter": column_letter(idx), "name": col.label, "id": col.id}
            for idx, col in enumerate(columns)
        ],
        "dataTypes": {col.label: infer_column_type(rows, col.id) for col in columns},
        "currentData": [
            {
                "rowIndex": idx + 1,
                "rowId": row.id,
                "values": [row.get(col.id) for col in columns],
            }
            for idx, row in enumerate(rows[:CONTEXT_ROW_LIMIT])
        ],
        "rowCount": len(rows),
        "note": CONTEXT_NOTE,
    }
