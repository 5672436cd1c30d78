"""SheetState: ordered columns, ordered rows, pending operations."""

from __future__ import annotations

from pydantic import Field

from sheetops.contracts.operations import EditOperation
from sheetops.contracts.sheet import Column, Row, SheetModel


class SheetState(SheetModel):
    """A snapshot of a sheet.

    Column order is left-to-right spreadsheet order; row order is
    top-to-bottom starting below the header.
    """

    columns: list[Column] = Field(default_factory=list)
    rows: list[Row] = Field(default_factory=list)
    pending_ops: list[EditOperation] = Field(default_factory=list)

    def column_ids(self) -> list[str]:
        return [c.id for c in self.columns]

    def column(self, column_id: str) -> Column | None:
        for col in self.columns:
            if col.id == column_id:
                return col
        return None

    def row(self, row_id: str) -> Row | None:
        for r in self.rows:
            if r.id == row_id:
                return r
        return None

    def cell(self, row_id: str, column_id: str) -> str:
        r = self.row(row_id)
        return r.get(column_id) if r is not None else ""
