"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from sheetops.adapters.base import BackendError
from sheetops.config import SheetOpsConfig
from sheetops.contracts.responses import (
    ConnectionLink,
    ConnectionStatus,
    SheetTab,
    SpreadsheetRef,
)
from sheetops.contracts.sheet import Column, Row
from sheetops.contracts.state import SheetState
from sheetops.engine.session import SheetSession

SPREADSHEET_ID = "1AbCdEfGhIjK"

SAMPLE_GRID = [
    ["Name", "Email", "Amount"],
    ["Alice Smith", "alice@example.com", "1200"],
    ["Bob Chen", "bob@example.com", "540"],
    ["Cara Diaz", "cara@example.com", "2300"],
]


class FakeBackend:
    """In-memory SheetsBackend with call log, failure injection and a gate."""

    def __init__(
        self,
        grids: dict[str, list[list[str]]] | None = None,
        *,
        connected: bool = True,
        account_id: str | None = "acct-1",
    ) -> None:
        self.grids = grids if grids is not None else {}
        self.connected = connected
        self.account_id = account_id
        self.calls: list[tuple[Any, ...]] = []
        self.fail_with: BackendError | None = None
        self.gate: asyncio.Event | None = None

    async def _maybe_block(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with

    async def check_connection(self, user_id: str, app: str) -> ConnectionStatus:
        self.calls.append(("check", user_id, app))
        return ConnectionStatus(
            connected=self.connected,
            account_id=self.account_id if self.connected else None,
        )

    async def initiate_connection(self, user_id: str, app: str, redirect_url: str) -> ConnectionLink:
        self.calls.append(("initiate", user_id, app, redirect_url))
        return ConnectionLink(redirect_url=f"https://auth.test/?next={redirect_url}", connection_id="conn-1")

    async def list_spreadsheets(self, user_id: str, account_id: str | None = None) -> list[SpreadsheetRef]:
        self.calls.append(("list", user_id, account_id))
        return [SpreadsheetRef(id=k, name=f"Sheet {k}") for k in sorted(self.grids)]

    async def list_tabs(self, spreadsheet_id: str, user_id: str, account_id: str | None = None) -> list[SheetTab]:
        self.calls.append(("tabs", spreadsheet_id, account_id))
        return [SheetTab(id=0, name="Sheet1")]

    async def create_spreadsheet(
        self, title: str, user_id: str, account_id: str | None = None,
    ) -> SpreadsheetRef:
        self.calls.append(("create", title, account_id))
        await self._maybe_block()
        spreadsheet_id = f"created-{len(self.grids) + 1}"
        self.grids[spreadsheet_id] = []
        return SpreadsheetRef(id=spreadsheet_id, name=title, url=f"https://sheets.test/{spreadsheet_id}")

    async def read_values(
        self, spreadsheet_id: str, range: str, user_id: str, account_id: str | None = None,
    ) -> list[list[str]]:
        self.calls.append(("read", spreadsheet_id, range, account_id))
        await self._maybe_block()
        return [list(r) for r in self.grids.get(spreadsheet_id, [])]

    async def write_values(
        self,
        spreadsheet_id: str,
        tab: str,
        grid: list[list[str]],
        user_id: str,
        account_id: str | None = None,
    ) -> int:
        self.calls.append(("write", spreadsheet_id, tab, account_id))
        await self._maybe_block()
        self.grids[spreadsheet_id] = [list(r) for r in grid]
        return len(grid)


@pytest.fixture()
def sample_state() -> SheetState:
    return SheetState(
        columns=[
            Column(id="name", label="Name"),
            Column(id="email", label="Email"),
            Column(id="amount", label="Amount"),
        ],
        rows=[
            Row(id="r1", cells={"name": "Alice Smith", "email": "alice@example.com", "amount": "1200"}),
            Row(id="r2", cells={"name": "Bob Chen", "email": "bob@example.com", "amount": "540"}),
            Row(id="r3", cells={"name": "Cara Diaz", "email": "cara@example.com", "amount": "2300"}),
        ],
    )


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend({SPREADSHEET_ID: [list(r) for r in SAMPLE_GRID]})


@pytest.fixture()
def config() -> SheetOpsConfig:
    return SheetOpsConfig(user_id="user-1")


@pytest.fixture()
def session(backend: FakeBackend, config: SheetOpsConfig) -> SheetSession:
    return SheetSession(backend, config=config, spreadsheet_id=SPREADSHEET_ID)
