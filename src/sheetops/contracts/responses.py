"""Command-specific result models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from sheetops.contracts.operations import EditOperation
from sheetops.contracts.sheet import ColumnType, ValidationIssue
from sheetops.contracts.state import SheetState


class SpreadsheetRef(BaseModel):
    """A spreadsheet visible to the connected account."""

    id: str
    name: str
    url: str | None = None


class SheetTab(BaseModel):
    """A worksheet tab within a spreadsheet."""

    id: int = 0
    name: str = "Sheet1"


class ConnectionStatus(BaseModel):
    """Result of a broker connection check."""

    connected: bool = False
    account_id: str | None = None
    accounts: list[dict[str, Any]] = Field(default_factory=list)


class ConnectionLink(BaseModel):
    """Result of initiating an OAuth connection through the broker."""

    redirect_url: str
    connection_id: str | None = None


class PullResult(BaseModel):
    spreadsheet_id: str
    range: str
    column_count: int = 0
    row_count: int = 0
    synced_at: str = ""
    fingerprint: str = ""


class PushResult(BaseModel):
    spreadsheet_id: str
    tab: str
    rows_written: int = 0
    operations_applied: int = 0
    synced_at: str = ""
    fingerprint: str = ""


class PreviewResult(BaseModel):
    """Preview state plus a per-operation description of pending changes."""

    state: SheetState
    pending_ops: list[EditOperation] = Field(default_factory=list)
    descriptions: list[str] = Field(default_factory=list)
    summary: dict[str, Any] = Field(default_factory=dict)


class ValidationResult(BaseModel):
    """Result of a validation pass."""

    valid: bool = True
    issues: list[ValidationIssue] = Field(default_factory=list)
    column_types: dict[str, ColumnType] = Field(default_factory=dict)


class ColumnSummary(BaseModel):
    """Numeric summary of a column."""

    column_id: str
    count: int = 0
    total: float = 0.0
    average: float = 0.0


class AgentReply(BaseModel):
    """Outcome of one agent turn."""

    status: Literal["ok", "auth_required", "cancelled", "error"] = "ok"
    content: str = ""
    run_id: str | None = None
    operations: list[EditOperation] = Field(default_factory=list)
    error_code: str | None = None
