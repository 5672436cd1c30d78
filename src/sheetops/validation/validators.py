"""Validation logic: column type inference and per-cell conformance.

Validation is advisory.  It never blocks an operation; issues are
recomputed on demand and handed to the UI and the agent context.
"""

from __future__ import annotations

import math
import re
from datetime import datetime

from sheetops.contracts.responses import ValidationResult
from sheetops.contracts.sheet import Column, ColumnType, Row, ValidationIssue
from sheetops.contracts.state import SheetState

MAX_INFER_ROWS = 20

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
)

# Bucket priority; ties resolve to the earlier entry.
TYPE_PRIORITY: tuple[ColumnType, ...] = ("email", "number", "date", "string")

ISSUE_MESSAGES: dict[ColumnType, str] = {
    "email": "Invalid email format",
    "number": "Expected a number",
    "date": "Expected a date",
}


def is_email(value: str) -> bool:
    return EMAIL_PATTERN.match(value) is not None


def is_number(value: str) -> bool:
    try:
        return math.isfinite(float(value))
    except ValueError:
        return False


def is_date(value: str) -> bool:
    for fmt in DATE_FORMATS:
        try:
            datetime.strptime(value, fmt)
            return True
        except ValueError:
            continue
    return False


def classify_value(value: str) -> ColumnType:
    """First matching bucket in priority order."""
    if is_email(value):
        return "email"
    if is_number(value):
        return "number"
    if is_date(value):
        return "date"
    return "string"


def conforms(value: str, column_type: ColumnType) -> bool:
    if column_type == "email":
        return is_email(value)
    if column_type == "number":
        return is_number(value)
    if column_type == "date":
        return is_date(value)
    return True


def infer_column_type(rows: list[Row], column_id: str) -> ColumnType:
    """Infer a column's type from the first ``MAX_INFER_ROWS`` rows.

    Blank values are ignored.  The bucket with the strict maximum count
    wins; ties go to the higher-priority bucket.
    """
    counts: dict[ColumnType, int] = {t: 0 for t in TYPE_PRIORITY}
    for row in rows[:MAX_INFER_ROWS]:
        value = row.get(column_id).strip()
        if not value:
            continue
        counts[classify_value(value)] += 1
    best: ColumnType = "string"
    best_count = 0
    for column_type in TYPE_PRIORITY:
        if counts[column_type] > best_count:
            best, best_count = column_type, counts[column_type]
    return best


def validate_rows(columns: list[Column], rows: list[Row]) -> list[ValidationIssue]:
    """Flag non-blank values that do not match their column's inferred type."""
    issues: list[ValidationIssue] = []
    for column in columns:
        inferred = infer_column_type(rows, column.id)
        if inferred == "string":
            continue
        for row in rows:
            value = row.get(column.id).strip()
            if not value or conforms(value, inferred):
                continue
            issues.append(ValidationIssue(
                id=f"val-{row.id}-{column.id}",
                row_id=row.id,
                column_id=column.id,
                message=ISSUE_MESSAGES[inferred],
            ))
    return issues


def validate_state(state: SheetState) -> ValidationResult:
    """Run a validation pass over ``state`` and report inferred types."""
    issues = validate_rows(state.columns, state.rows)
    return ValidationResult(
        valid=not issues,
        issues=issues,
        column_types={c.id: infer_column_type(state.rows, c.id) for c in state.columns},
    )
