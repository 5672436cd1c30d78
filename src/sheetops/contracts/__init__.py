"""Pydantic models for sheet state, edit operations, and command results."""

from sheetops.contracts.common import (
    ChangeRecord,
    ErrorDetail,
    Metrics,
    ResponseEnvelope,
    Target,
    WarningDetail,
)
from sheetops.contracts.operations import (
    AddRow,
    CellUpdate,
    ColumnAdd,
    ColumnDelete,
    EditOperation,
    RowDelete,
    Sort,
)
from sheetops.contracts.sheet import Column, ColumnType, Row, ValidationIssue
from sheetops.contracts.state import SheetState

__all__ = [
    "AddRow",
    "CellUpdate",
    "ChangeRecord",
    "Column",
    "ColumnAdd",
    "ColumnDelete",
    "ColumnType",
    "EditOperation",
    "ErrorDetail",
    "Metrics",
    "ResponseEnvelope",
    "Row",
    "RowDelete",
    "SheetState",
    "Sort",
    "Target",
    "ValidationIssue",
    "WarningDetail",
]
