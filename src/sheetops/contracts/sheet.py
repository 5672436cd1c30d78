"""Sheet data model: columns, rows, validation issues."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ColumnType = Literal["email", "number", "date", "string"]


class SheetModel(BaseModel):
    """Base for sheet models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Column(SheetModel):
    """A spreadsheet column. Identity is ``id``; ``label`` is the header text."""

    id: str
    label: str
    align: Literal["left", "right"] | None = None


class Row(SheetModel):
    """A data row. Missing cell keys read as the empty string."""

    id: str
    cells: dict[str, str] = Field(default_factory=dict)

    def get(self, column_id: str) -> str:
        return self.cells.get(column_id) or ""


class ValidationIssue(SheetModel):
    """An advisory finding about a single cell. Never stored in state."""

    id: str
    row_id: str
    column_id: str
    message: str
