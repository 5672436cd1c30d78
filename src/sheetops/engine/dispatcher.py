"""Response envelope helpers and error codes."""

from __future__ import annotations

from typing import Any

from sheetops.contracts.common import (
    ChangeRecord,
    ErrorDetail,
    Metrics,
    ResponseEnvelope,
    Target,
)

ERR_NO_SPREADSHEET = "ERR_NO_SPREADSHEET"
ERR_SHEET_EMPTY = "ERR_SHEET_EMPTY"
ERR_NO_CONNECTED_ACCOUNT = "ERR_NO_CONNECTED_ACCOUNT"
ERR_AUTH = "ERR_AUTH"
ERR_TRANSPORT = "ERR_TRANSPORT"
ERR_MALFORMED_RESPONSE = "ERR_MALFORMED_RESPONSE"
ERR_NO_PENDING_CHANGES = "ERR_NO_PENDING_CHANGES"
ERR_BUSY = "ERR_BUSY"
ERR_AGENT_PROTOCOL = "ERR_AGENT_PROTOCOL"
ERR_AGENT_AUTH_REQUIRED = "ERR_AGENT_AUTH_REQUIRED"
ERR_INVALID_OPERATION = "ERR_INVALID_OPERATION"
ERR_INVALID_REQUEST = "ERR_INVALID_REQUEST"
ERR_INTERNAL = "ERR_INTERNAL"


def success_envelope(
    command: str,
    result: Any,
    *,
    target: Target | None = None,
    changes: list[ChangeRecord] | None = None,
    warnings: list | None = None,
    duration_ms: int = 0,
) -> ResponseEnvelope:
    return ResponseEnvelope(
        ok=True,
        command=command,
        target=target or Target(),
        result=result,
        changes=changes or [],
        warnings=warnings or [],
        metrics=Metrics(duration_ms=duration_ms),
    )


def error_envelope(
    command: str,
    code: str,
    message: str,
    *,
    target: Target | None = None,
    details: dict | None = None,
    duration_ms: int = 0,
) -> ResponseEnvelope:
    return ResponseEnvelope(
        ok=False,
        command=command,
        target=target or Target(),
        errors=[ErrorDetail(code=code, message=message, details=details)],
        metrics=Metrics(duration_ms=duration_ms),
    )


def envelope_to_dict(envelope: ResponseEnvelope) -> dict[str, Any]:
    """JSON-ready dict; nested sheet models use their camelCase wire names."""
    return envelope.model_dump(mode="json", by_alias=True)
