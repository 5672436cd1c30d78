"""Edit operation models.

Operations are a closed, discriminated union keyed on ``type``.  Each
carries an ``id`` (unique within a session, used for display keys) and an
``author``.  Order in the pending queue is application order.
"""

from __future__ import annotations

import time
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from sheetops.contracts.sheet import Row, SheetModel

Author = Literal["user", "agent"]
SortDirection = Literal["asc", "desc"]

OPERATION_TYPES: frozenset[str] = frozenset({
    "cell_update", "column_add", "column_delete", "add_row", "row_delete", "sort",
})


class _OperationBase(SheetModel):
    id: str
    author: Author = "user"


class CellUpdate(_OperationBase):
    """Set one cell. ``new_value`` of None writes the empty string."""

    type: Literal["cell_update"] = "cell_update"
    row_id: str
    column_id: str
    old_value: str | None = None
    new_value: str | None = None


class ColumnAdd(_OperationBase):
    """Append a column; label defaults to the id."""

    type: Literal["column_add"] = "column_add"
    column_id: str
    column_label: str | None = None


class ColumnDelete(_OperationBase):
    type: Literal["column_delete"] = "column_delete"
    column_id: str


class AddRow(_OperationBase):
    """Append a full row verbatim (no backfill of missing columns)."""

    type: Literal["add_row"] = "add_row"
    row: Row


class RowDelete(_OperationBase):
    type: Literal["row_delete"] = "row_delete"
    row_id: str


class Sort(_OperationBase):
    type: Literal["sort"] = "sort"
    column_id: str
    direction: SortDirection = "asc"


EditOperation = Annotated[
    Union[CellUpdate, ColumnAdd, ColumnDelete, AddRow, RowDelete, Sort],
    Field(discriminator="type"),
]

_operation_adapter: TypeAdapter[EditOperation] = TypeAdapter(EditOperation)


def parse_operation(data: Any) -> EditOperation:
    """Validate a raw mapping (camelCase or snake_case keys) into an operation.

    Raises ``pydantic.ValidationError`` for unknown types or missing fields.
    """
    return _operation_adapter.validate_python(data)


def now_ms() -> int:
    return int(time.time() * 1000)


def new_op_id(*parts: object, stamp: int | None = None) -> str:
    """Build an operation id: ``op-<ms>`` plus optional suffix parts."""
    ms = now_ms() if stamp is None else stamp
    suffix = "-".join(str(p) for p in parts)
    return f"op-{ms}-{suffix}" if suffix else f"op-{ms}"


def describe_operation(op: EditOperation) -> str:
    """One-line human-readable summary of an operation."""
    if isinstance(op, CellUpdate):
        return f"Updated {op.row_id} · {op.column_id}: {op.new_value or ''}"
    if isinstance(op, ColumnAdd):
        return f"Added column: {op.column_label or op.column_id}"
    if isinstance(op, ColumnDelete):
        return f"Deleted column: {op.column_id}"
    if isinstance(op, AddRow):
        return f"Added row: {op.row.id}"
    if isinstance(op, RowDelete):
        return f"Deleted row: {op.row_id}"
    if isinstance(op, Sort):
        return f"Sorted by {op.column_id} ({op.direction})"
    return f"Pending change ({op.type})"
