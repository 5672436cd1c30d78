"""Backend protocol for reading and writing remote spreadsheets."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from sheetops.contracts.responses import (
    ConnectionLink,
    ConnectionStatus,
    SheetTab,
    SpreadsheetRef,
)
from sheetops.engine.dispatcher import ERR_AUTH, ERR_MALFORMED_RESPONSE, ERR_TRANSPORT


class BackendError(Exception):
    """A spreadsheet backend call failed."""

    code = ERR_TRANSPORT

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class BackendAuthError(BackendError):
    """The backend rejected our credentials or no account is connected."""

    code = ERR_AUTH


class BackendTransportError(BackendError):
    """Network failure or non-2xx status from the backend."""

    code = ERR_TRANSPORT


class BackendResponseError(BackendError):
    """The backend answered with a body we cannot interpret."""

    code = ERR_MALFORMED_RESPONSE


@runtime_checkable
class SheetsBackend(Protocol):
    """What the session needs from a spreadsheet collaborator.

    ``read_values`` returns a 2D grid whose first row is the header; an
    empty list is a valid answer.  ``write_values`` overwrites: the tab
    is cleared and ``grid`` is written from A1.
    """

    async def check_connection(self, user_id: str, app: str) -> ConnectionStatus: ...

    async def initiate_connection(
        self, user_id: str, app: str, redirect_url: str,
    ) -> ConnectionLink: ...

    async def list_spreadsheets(
        self, user_id: str, account_id: str | None = None,
    ) -> list[SpreadsheetRef]: ...

    async def create_spreadsheet(
        self, title: str, user_id: str, account_id: str | None = None,
    ) -> SpreadsheetRef: ...

    async def list_tabs(
        self, spreadsheet_id: str, user_id: str, account_id: str | None = None,
    ) -> list[SheetTab]: ...

    async def read_values(
        self, spreadsheet_id: str, range: str, user_id: str, account_id: str | None = None,
    ) -> list[list[str]]: ...

    async def write_values(
        self,
        spreadsheet_id: str,
        tab: str,
        grid: list[list[str]],
        user_id: str,
        account_id: str | None = None,
    ) -> int: ...
