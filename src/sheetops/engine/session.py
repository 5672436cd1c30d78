"""SheetSession: owns the base state and the pending operation queue.

All mutation goes through four entry points: ``pull`` replaces the base,
``propose`` appends operations, ``push`` commits the preview as the new
base, and ``discard`` drops pending operations.  Every command returns a
``ResponseEnvelope``; collaborator failures become error envelopes and
leave base and pending untouched.

Each mutation emits a ``state.changed`` event carrying the snapshot.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from pydantic import ValidationError

from sheetops.adapters.base import BackendError, SheetsBackend
from sheetops.config import SheetOpsConfig
from sheetops.contracts.common import ResponseEnvelope, Target
from sheetops.contracts.operations import (
    Author,
    CellUpdate,
    EditOperation,
    describe_operation,
    new_op_id,
    parse_operation,
)
from sheetops.contracts.responses import PreviewResult, PullResult, PushResult
from sheetops.contracts.sheet import Column, Row
from sheetops.contracts.state import SheetState
from sheetops.diff.differ import diff_states, diff_summary
from sheetops.engine.applicator import apply_operations, preview_state
from sheetops.engine.dispatcher import (
    ERR_BUSY,
    ERR_INVALID_OPERATION,
    ERR_NO_CONNECTED_ACCOUNT,
    ERR_NO_PENDING_CHANGES,
    ERR_NO_SPREADSHEET,
    ERR_SHEET_EMPTY,
    ERR_TRANSPORT,
    error_envelope,
    success_envelope,
)
from sheetops.engine.grid import grid_to_state, state_to_grid
from sheetops.io.fileops import grid_fingerprint
from sheetops.observe.events import EventEmitter, Timer
from sheetops.validation.validators import validate_state

PLACEHOLDER_SPREADSHEET_IDS = frozenset({"sample", "new"})
DEFAULT_SPREADSHEET_TITLE = "Untitled Spreadsheet"

SAMPLE_STATE = SheetState(
    columns=[
        Column(id="name", label="Name"),
        Column(id="email", label="Email"),
        Column(id="amount", label="Amount", align="right"),
    ],
    rows=[
        Row(id="r1", cells={"name": "Alice Smith", "email": "alice@example.com", "amount": "1200"}),
        Row(id="r2", cells={"name": "Bob Chen", "email": "bob@example.com", "amount": "540"}),
        Row(id="r3", cells={"name": "Cara Diaz", "email": "cara@example.com", "amount": "2300"}),
    ],
)


class SessionError(Exception):
    """A command failed with a user-facing message."""

    def __init__(self, code: str, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


def is_real_spreadsheet_id(spreadsheet_id: str | None) -> bool:
    """Placeholders (``sample``, ``new``) and ids of 5 characters or fewer are not real."""
    return bool(
        spreadsheet_id
        and spreadsheet_id not in PLACEHOLDER_SPREADSHEET_IDS
        and len(spreadsheet_id) > 5
    )


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _backend_error(exc: BackendError) -> SessionError:
    return SessionError(exc.code, exc.message, details={"detail": exc.details} if exc.details else None)


class SheetSession:
    """One user's view of one spreadsheet tab."""

    def __init__(
        self,
        backend: SheetsBackend | None = None,
        *,
        config: SheetOpsConfig | None = None,
        spreadsheet_id: str | None = None,
        tab: str | None = None,
        range: str | None = None,
        state: SheetState | None = None,
        events: EventEmitter | None = None,
    ) -> None:
        self.config = config or SheetOpsConfig()
        self.backend = backend
        self.spreadsheet_id = spreadsheet_id
        self.tab = tab or self.config.default_tab
        self.range = range or self.config.default_range
        self.events = events or EventEmitter(enabled=self.config.events)
        self.account_id: str | None = None
        self.last_synced_at: str | None = None
        self._base = (state or SheetState()).model_copy(update={"pending_ops": []})
        self._pending: list[EditOperation] = []
        self._pulling = False
        self._pushing = False

    @classmethod
    def sample(cls, backend: SheetsBackend | None = None, **kwargs: Any) -> "SheetSession":
        """Offline session seeded with the three-row sample sheet."""
        kwargs.setdefault("spreadsheet_id", "sample")
        return cls(backend, state=SAMPLE_STATE.model_copy(deep=True), **kwargs)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def base(self) -> SheetState:
        return self._base

    @property
    def pending_ops(self) -> list[EditOperation]:
        return list(self._pending)

    @property
    def busy(self) -> bool:
        return self._pulling or self._pushing

    @property
    def user_id(self) -> str:
        return self.config.user_id

    def target(self) -> Target:
        return Target(spreadsheet_id=self.spreadsheet_id, tab=self.tab, range=self.range)

    def snapshot(self) -> SheetState:
        """Base state with the pending queue attached."""
        return self._base.model_copy(update={"pending_ops": list(self._pending)})

    def preview_state(self) -> SheetState:
        return preview_state(self._base, self._pending)

    def on_state_changed(self, listener: Callable[[SheetState], None]) -> Callable[[], None]:
        """Call ``listener`` with a fresh snapshot after every mutation."""

        def forward(event: str, data: dict[str, Any]) -> None:
            if event == "state.changed":
                listener(data["snapshot"])

        return self.events.subscribe(forward)

    def _notify(self) -> None:
        self.events.emit("state.changed", {
            "snapshot": self.snapshot(),
            "rows": len(self._base.rows),
            "columns": len(self._base.columns),
            "pending": len(self._pending),
        })

    def _envelope(
        self, command: str, timer: Timer, result: Any = None, error: SessionError | None = None, **extra: Any,
    ) -> ResponseEnvelope:
        if error is not None:
            return error_envelope(
                command, error.code, error.message,
                target=self.target(), details=error.details, duration_ms=timer.elapsed_ms,
            )
        return success_envelope(command, result, target=self.target(), duration_ms=timer.elapsed_ms, **extra)

    # ------------------------------------------------------------------
    # Collaborator helpers
    # ------------------------------------------------------------------
    def _require_backend(self) -> SheetsBackend:
        if self.backend is None:
            raise SessionError(ERR_TRANSPORT, "No spreadsheet backend is configured.")
        return self.backend

    def _require_spreadsheet(self) -> str:
        if not is_real_spreadsheet_id(self.spreadsheet_id):
            raise SessionError(
                ERR_NO_SPREADSHEET, "Select a spreadsheet first.",
                details={"spreadsheet_id": self.spreadsheet_id},
            )
        assert self.spreadsheet_id is not None
        return self.spreadsheet_id

    async def _resolve_account(self, backend: SheetsBackend) -> str | None:
        if self.config.auth_mode == "service":
            return None
        if self.account_id:
            return self.account_id
        try:
            status = await backend.check_connection(self.user_id, self.config.app_name)
        except BackendError as exc:
            raise _backend_error(exc) from exc
        if not status.connected or not status.account_id:
            raise SessionError(
                ERR_NO_CONNECTED_ACCOUNT,
                "No connected Google Sheets account found. Connect your account first.",
            )
        self.account_id = status.account_id
        return self.account_id

    # ------------------------------------------------------------------
    # Connection and discovery
    # ------------------------------------------------------------------
    async def check_connection(self) -> ResponseEnvelope:
        error = status = None
        with Timer() as timer:
            try:
                backend = self._require_backend()
                status = await backend.check_connection(self.user_id, self.config.app_name)
            except BackendError as exc:
                error = _backend_error(exc)
            except SessionError as exc:
                error = exc
        if status is not None:
            self.account_id = status.account_id if status.connected else None
            self.events.emit("connection.checked", {"connected": status.connected, "account_id": status.account_id})
        return self._envelope("connection.check", timer, status, error)

    async def initiate_connection(self, redirect_url: str) -> ResponseEnvelope:
        error = link = None
        with Timer() as timer:
            try:
                backend = self._require_backend()
                link = await backend.initiate_connection(self.user_id, self.config.app_name, redirect_url)
            except BackendError as exc:
                error = _backend_error(exc)
            except SessionError as exc:
                error = exc
        return self._envelope("connection.initiate", timer, link, error)

    async def list_spreadsheets(self) -> ResponseEnvelope:
        error = sheets = None
        with Timer() as timer:
            try:
                backend = self._require_backend()
                account_id = await self._resolve_account(backend)
                sheets = await backend.list_spreadsheets(self.user_id, account_id)
            except BackendError as exc:
                error = _backend_error(exc)
            except SessionError as exc:
                error = exc
        return self._envelope("sheets.list", timer, sheets, error)

    async def create_spreadsheet(self, title: str | None = None) -> ResponseEnvelope:
        """Create a spreadsheet for the connected account.

        The current selection is left alone; pull the new id to open it.
        """
        error = ref = None
        title = (title or "").strip() or DEFAULT_SPREADSHEET_TITLE
        with Timer() as timer:
            try:
                backend = self._require_backend()
                account_id = await self._resolve_account(backend)
                ref = await backend.create_spreadsheet(title, self.user_id, account_id)
            except BackendError as exc:
                error = _backend_error(exc)
            except SessionError as exc:
                error = exc
        if ref is not None:
            self.events.emit("spreadsheet.created", {"spreadsheet_id": ref.id, "title": ref.name})
        return self._envelope("sheets.create", timer, ref, error)

    async def list_tabs(self, spreadsheet_id: str | None = None) -> ResponseEnvelope:
        error = tabs = None
        with Timer() as timer:
            try:
                backend = self._require_backend()
                if spreadsheet_id is None:
                    spreadsheet_id = self._require_spreadsheet()
                account_id = await self._resolve_account(backend)
                tabs = await backend.list_tabs(spreadsheet_id, self.user_id, account_id)
            except BackendError as exc:
                error = _backend_error(exc)
            except SessionError as exc:
                error = exc
        return self._envelope("tabs.list", timer, tabs, error)

    # ------------------------------------------------------------------
    # Pull / push
    # ------------------------------------------------------------------
    async def pull(
        self,
        spreadsheet_id: str | None = None,
        *,
        tab: str | None = None,
        range: str | None = None,
    ) -> ResponseEnvelope:
        """Replace the base state with the remote tab and clear pending operations.

        ``spreadsheet_id``/``tab``/``range`` retarget the session, but only
        once the pull succeeds.
        """
        if self._pulling:
            return error_envelope("sheet.pull", ERR_BUSY, "A pull is already in progress.", target=self.target())
        sheet_id = spreadsheet_id or self.spreadsheet_id
        tab = tab or self.tab
        range = range or self.range
        a1_range = f"{tab}!{range}"
        error = result = None
        self._pulling = True
        with Timer() as timer:
            try:
                if not is_real_spreadsheet_id(sheet_id):
                    raise SessionError(
                        ERR_NO_SPREADSHEET, "Select a spreadsheet first.",
                        details={"spreadsheet_id": sheet_id},
                    )
                assert sheet_id is not None
                backend = self._require_backend()
                self.events.emit("pull.start", {"spreadsheet_id": sheet_id, "range": a1_range})
                account_id = await self._resolve_account(backend)
                values = await backend.read_values(sheet_id, a1_range, self.user_id, account_id)
                if not values:
                    raise SessionError(
                        ERR_SHEET_EMPTY, "The sheet is empty. Add a header row and try again.",
                        details={"range": a1_range},
                    )
                state = grid_to_state(values)
                self._base = state
                self._pending = []
                self.spreadsheet_id, self.tab, self.range = sheet_id, tab, range
                self.last_synced_at = _utc_now()
                result = PullResult(
                    spreadsheet_id=sheet_id,
                    range=a1_range,
                    column_count=len(state.columns),
                    row_count=len(state.rows),
                    synced_at=self.last_synced_at,
                    fingerprint=grid_fingerprint(values),
                )
            except BackendError as exc:
                error = _backend_error(exc)
            except SessionError as exc:
                error = exc
            finally:
                self._pulling = False
        if result is not None:
            self.events.emit("pull.done", result.model_dump())
            self._notify()
        return self._envelope("sheet.pull", timer, result, error)

    async def push(self) -> ResponseEnvelope:
        """Write the preview state to the remote tab, then make it the base.

        Operations proposed while the write is in flight stay pending.
        """
        if self._pushing:
            return error_envelope("sheet.push", ERR_BUSY, "A push is already in progress.", target=self.target())
        error = result = None
        self._pushing = True
        with Timer() as timer:
            try:
                sheet_id = self._require_spreadsheet()
                if not self._pending:
                    raise SessionError(ERR_NO_PENDING_CHANGES, "There are no pending changes to push.")
                backend = self._require_backend()
                committed = list(self._pending)
                effective = apply_operations(self._base, committed)
                grid = state_to_grid(effective)
                self.events.emit(
                    "push.start", {"spreadsheet_id": sheet_id, "tab": self.tab, "operations": len(committed)},
                )
                account_id = await self._resolve_account(backend)
                rows_written = await backend.write_values(sheet_id, self.tab, grid, self.user_id, account_id)
                self._base = effective
                # Discard or pull may have replaced the queue mid-write.
                done = {id(op) for op in committed}
                self._pending = [op for op in self._pending if id(op) not in done]
                self.last_synced_at = _utc_now()
                result = PushResult(
                    spreadsheet_id=sheet_id,
                    tab=self.tab,
                    rows_written=rows_written,
                    operations_applied=len(committed),
                    synced_at=self.last_synced_at,
                    fingerprint=grid_fingerprint(grid),
                )
            except BackendError as exc:
                error = _backend_error(exc)
            except SessionError as exc:
                error = exc
            finally:
                self._pushing = False
        if result is not None:
            self.events.emit("push.done", result.model_dump())
            self._notify()
        return self._envelope("sheet.push", timer, result, error)

    # ------------------------------------------------------------------
    # Local edits
    # ------------------------------------------------------------------
    def propose(
        self,
        ops: Sequence[EditOperation | dict[str, Any]],
        *,
        author: Author | None = None,
    ) -> ResponseEnvelope:
        """Append operations to the pending queue.

        Raw dicts are validated into operations; if any fails, nothing is
        appended.  ``author`` overrides the author of every operation.
        """
        error = None
        added: list[EditOperation] = []
        with Timer() as timer:
            try:
                for idx, raw in enumerate(ops):
                    op = raw if not isinstance(raw, dict) else parse_operation(raw)
                    if author is not None:
                        op = op.model_copy(update={"author": author})
                    added.append(op)
            except ValidationError as exc:
                error = SessionError(
                    ERR_INVALID_OPERATION,
                    f"Invalid operation at index {idx}.",
                    details={"index": idx, "errors": exc.errors(include_url=False, include_context=False)},
                )
        if error is None and added:
            self._pending.extend(added)
            self._notify()
        return self._envelope(
            "ops.propose", timer,
            {"added": len(added), "pending": len(self._pending), "ids": [op.id for op in added]},
            error,
        )

    def discard(self) -> ResponseEnvelope:
        with Timer() as timer:
            dropped = len(self._pending)
            self._pending = []
        if dropped:
            self._notify()
        return self._envelope("ops.discard", timer, {"discarded": dropped})

    def commit_cell_edit(self, row_id: str, column_id: str, value: str) -> ResponseEnvelope:
        """Record a manual cell edit as a ``cell_update``; unchanged values add nothing."""
        with Timer() as timer:
            old_value = self.preview_state().cell(row_id, column_id)
        if old_value == value:
            return self._envelope("cell.edit", timer, {"added": 0, "pending": len(self._pending), "ids": []})
        op = CellUpdate(
            id=new_op_id(row_id, column_id),
            row_id=row_id,
            column_id=column_id,
            old_value=old_value,
            new_value=value,
            author="user",
        )
        env = self.propose([op])
        env.command = "cell.edit"
        return env

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------
    def preview(self) -> ResponseEnvelope:
        """Preview state, pending operations and cell-level changes against the base."""
        with Timer() as timer:
            state = self.preview_state()
            changes = diff_states(self._base, state, self._pending)
            result = PreviewResult(
                state=state,
                pending_ops=list(self._pending),
                descriptions=[describe_operation(op) for op in self._pending],
                summary=diff_summary(changes),
            )
        return self._envelope("sheet.preview", timer, result, changes=changes)

    def validate(self) -> ResponseEnvelope:
        """Advisory validation of the preview state."""
        with Timer() as timer:
            result = validate_state(self.preview_state())
        return self._envelope("sheet.validate", timer, result)
