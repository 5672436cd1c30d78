"""Lifecycle event emission and timing."""

from __future__ import annotations

import sys
import time
from datetime import datetime, timezone
from typing import Any, Callable

import orjson

Listener = Callable[[str, dict[str, Any]], None]


def _json_default(obj: Any) -> Any:
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json", by_alias=True)
    return str(obj)


class Timer:
    """Simple context-manager timer for measuring duration_ms."""

    def __init__(self) -> None:
        self.start: float = 0
        self.elapsed_ms: int = 0

    def __enter__(self) -> "Timer":
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed_ms = int((time.perf_counter() - self.start) * 1000)


class EventEmitter:
    """Fans lifecycle events out to subscribers and, when enabled, to stderr as NDJSON.

    Subscribers are called synchronously in subscription order.  A
    subscriber that raises is unsubscribed; it never breaks the caller.
    """

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: str, data: dict[str, Any] | None = None) -> None:
        data = data or {}
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception as exc:  # noqa: BLE001
                self._listeners.remove(listener)
                self._write("listener.dropped", {"event": event, "error": str(exc)}, force=True)
        self._write(event, data)

    def _write(self, event: str, data: dict[str, Any], *, force: bool = False) -> None:
        if not (self.enabled or force):
            return
        payload = {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": data,
        }
        sys.stderr.write(orjson.dumps(payload, default=_json_default).decode() + "\n")
        sys.stderr.flush()
