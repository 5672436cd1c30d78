"""Spreadsheet backend speaking an integration broker's action API.

The broker mediates per-user OAuth to Google.  Every Sheets call is an
"action" executed on behalf of either a connected account id or an
entity (user) id.  Broker responses come in several shapes; each kind of
payload is pulled out by an ordered list of key paths, first non-empty
match wins, so nothing above this module branches on response shape.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from sheetops.adapters.base import (
    BackendAuthError,
    BackendError,
    BackendResponseError,
    BackendTransportError,
)
from sheetops.contracts.responses import (
    ConnectionLink,
    ConnectionStatus,
    SheetTab,
    SpreadsheetRef,
)
from sheetops.engine.grid import column_letter, grid_range

logger = logging.getLogger(__name__)

ExtractionPath = tuple[str | int, ...]

VALUES_PATHS: tuple[ExtractionPath, ...] = (
    ("data", "values"),
    ("data", "valueRanges", 0, "values"),
    ("data", "response_data", "valueRanges", 0, "values"),
)
FILES_PATHS: tuple[ExtractionPath, ...] = (
    ("data", "files"),
    ("data", "response_data", "files"),
)
TABS_PATHS: tuple[ExtractionPath, ...] = (
    ("data", "sheets"),
    ("data", "response_data", "sheets"),
)
SPREADSHEET_ID_PATHS: tuple[ExtractionPath, ...] = (
    ("data", "spreadsheetId"),
    ("data", "response_data", "spreadsheetId"),
    ("spreadsheetId",),
)

SPREADSHEET_MIME = "application/vnd.google-apps.spreadsheet"
PROBE_TAB_NAMES = ("Sheet1", "Sheet2", "Sheet3", "Data", "Main")
_MISSING_RANGE_MARKERS = ("Unable to parse range", "not found")
CLEAR_MIN_COLUMNS = 26
CLEAR_MIN_ROWS = 1000


def _walk(payload: Any, path: ExtractionPath) -> Any:
    cur = payload
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or len(cur) <= key:
                return None
            cur = cur[key]
        else:
            if not isinstance(cur, dict) or key not in cur:
                return None
            cur = cur[key]
    return cur


def extract_list(payload: Any, paths: tuple[ExtractionPath, ...]) -> list[Any]:
    """First non-empty list found along ``paths``; ``[]`` when none match."""
    for path in paths:
        found = _walk(payload, path)
        if isinstance(found, list) and found:
            return found
    return []


def extract_value(payload: Any, paths: tuple[ExtractionPath, ...]) -> str | None:
    """First non-empty string or number found along ``paths``."""
    for path in paths:
        found = _walk(payload, path)
        if isinstance(found, (str, int)) and not isinstance(found, bool) and str(found):
            return str(found)
    return None


def normalize_grid(values: list[Any]) -> list[list[str]]:
    """Coerce a raw value grid to strings; non-list rows become empty rows."""
    grid: list[list[str]] = []
    for row in values:
        if not isinstance(row, list):
            grid.append([])
            continue
        grid.append(["" if v is None else str(v) for v in row])
    return grid


def _is_sheets_account(item: dict[str, Any]) -> bool:
    app_name = str(item.get("appName") or item.get("appUniqueId") or "").lower()
    return ("sheet" in app_name or "google" in app_name) and item.get("status") == "ACTIVE"


class BrokerBackend:
    """Async client for the broker; one instance per session."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        *,
        app_name: str = "googlesheets",
        default_tab: str = "Sheet1",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.app_name = app_name
        self.default_tab = default_tab
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self._api_key = api_key

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------
    async def _send(
        self, method: str, path: str, *, json: Any = None, params: dict[str, str] | None = None,
    ) -> httpx.Response:
        headers = {"x-api-key": self._api_key}
        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=headers,
            )
        except httpx.HTTPError as exc:
            raise BackendTransportError(
                f"Broker request failed: {method} {path}", details=str(exc),
            ) from exc
        if response.status_code in (401, 403):
            raise BackendAuthError("Broker rejected the request.", details=response.text[:500])
        if response.is_error:
            raise BackendTransportError(
                f"Broker returned HTTP {response.status_code} for {path}",
                details=response.text[:500],
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Malformed broker response from %s: %s", response.url, response.text[:200])
            raise BackendResponseError("Invalid response from broker.", details=response.text[:500]) from exc

    def _action_body(
        self, input: dict[str, Any], user_id: str, account_id: str | None, app_name: str | None = None,
    ) -> dict[str, Any]:
        if account_id:
            return {"connectedAccountId": account_id, "input": input}
        return {"entityId": user_id, "appName": app_name or self.app_name, "input": input}

    async def execute_action(
        self,
        action: str,
        input: dict[str, Any],
        user_id: str,
        account_id: str | None = None,
        *,
        app_name: str | None = None,
    ) -> Any:
        response = await self._send(
            "POST",
            f"/api/v2/actions/{action}/execute",
            json=self._action_body(input, user_id, account_id, app_name),
        )
        return self._json(response)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------
    async def check_connection(self, user_id: str, app: str) -> ConnectionStatus:
        response = await self._send("GET", "/api/v1/connectedAccounts", params={"entityId": user_id})
        data = self._json(response)
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            items = []
        account = next((i for i in items if isinstance(i, dict) and _is_sheets_account(i)), None)
        return ConnectionStatus(
            connected=account is not None,
            account_id=account.get("id") if account else None,
            accounts=[i for i in items if isinstance(i, dict)],
        )

    async def initiate_connection(self, user_id: str, app: str, redirect_url: str) -> ConnectionLink:
        response = await self._send("GET", "/api/v1/integrations", params={"appName": app})
        data = self._json(response)
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list) or not items:
            raise BackendAuthError(
                "Google Sheets integration not found. Set it up in the broker dashboard first."
            )
        integration = items[0]
        if not isinstance(integration, dict) or not integration.get("id"):
            raise BackendResponseError(
                "Broker returned an unusable integration entry.", details=str(integration)[:500],
            )
        response = await self._send(
            "POST",
            "/api/v1/connectedAccounts",
            json={
                "integrationId": integration.get("id"),
                "entityId": user_id,
                "redirectUri": redirect_url,
                "data": {},
            },
        )
        data = self._json(response)
        redirect = data.get("redirectUrl") if isinstance(data, dict) else None
        if not redirect:
            raise BackendResponseError(
                "No redirect URL returned. Check the broker integration setup.",
                details=str(data)[:500],
            )
        return ConnectionLink(redirect_url=redirect, connection_id=data.get("connectionId") or data.get("id"))

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------
    async def list_spreadsheets(self, user_id: str, account_id: str | None = None) -> list[SpreadsheetRef]:
        try:
            data = await self.execute_action("GOOGLESHEETS_LIST_SPREADSHEETS", {}, user_id, account_id)
        except BackendTransportError as exc:
            logger.info("Spreadsheet listing failed (%s); trying Drive file listing", exc.message)
            data = await self.execute_action(
                "GOOGLEDRIVE_LIST_FILES",
                {"q": f"mimeType='{SPREADSHEET_MIME}'", "pageSize": 50},
                user_id,
                account_id,
                app_name="googledrive",
            )
        return [
            SpreadsheetRef(id=str(f.get("id")), name=str(f.get("name", "")))
            for f in extract_list(data, FILES_PATHS)
            if isinstance(f, dict) and f.get("id")
        ]

    async def create_spreadsheet(
        self, title: str, user_id: str, account_id: str | None = None,
    ) -> SpreadsheetRef:
        """Create an empty spreadsheet; retries under the older action name."""
        try:
            data = await self.execute_action("GOOGLESHEETS_CREATE_GOOGLE_SHEET", {"title": title}, user_id, account_id)
        except BackendTransportError as exc:
            logger.info("Sheet creation failed (%s); trying GOOGLESHEETS_CREATE_SPREADSHEET", exc.message)
            data = await self.execute_action("GOOGLESHEETS_CREATE_SPREADSHEET", {"title": title}, user_id, account_id)
        spreadsheet_id = extract_value(data, SPREADSHEET_ID_PATHS)
        if not spreadsheet_id:
            raise BackendResponseError("Spreadsheet created but no id was returned.", details=str(data)[:500])
        return SpreadsheetRef(
            id=spreadsheet_id,
            name=title,
            url=f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}",
        )

    async def _probe_tab(self, spreadsheet_id: str, name: str, user_id: str, account_id: str | None) -> bool:
        try:
            response = await self._send(
                "POST",
                "/api/v2/actions/GOOGLESHEETS_BATCH_GET/execute",
                json=self._action_body(
                    {"spreadsheet_id": spreadsheet_id, "ranges": [f"{name}!A1:A1"]}, user_id, account_id,
                ),
            )
        except BackendError:
            return False
        return not any(marker in response.text for marker in _MISSING_RANGE_MARKERS)

    async def list_tabs(self, spreadsheet_id: str, user_id: str, account_id: str | None = None) -> list[SheetTab]:
        """Worksheet tabs; falls back to probing common names, then the default tab."""
        try:
            data = await self.execute_action(
                "GOOGLESHEETS_GET_SPREADSHEET_INFO", {"spreadsheet_id": spreadsheet_id}, user_id, account_id,
            )
            sheets = extract_list(data, TABS_PATHS)
        except BackendError as exc:
            logger.info("Spreadsheet info unavailable for %s: %s", spreadsheet_id, exc.message)
            sheets = []
        tabs: list[SheetTab] = []
        for sheet in sheets:
            props = sheet.get("properties") if isinstance(sheet, dict) else None
            props = props if isinstance(props, dict) else {}
            try:
                sheet_id = int(props.get("sheetId") or 0)
            except (TypeError, ValueError, OverflowError):
                logger.warning("Skipping tab with unusable sheetId: %r", props.get("sheetId"))
                continue
            tabs.append(SheetTab(id=sheet_id, name=str(props.get("title") or self.default_tab)))
        if tabs:
            return tabs

        for idx, name in enumerate(PROBE_TAB_NAMES):
            if await self._probe_tab(spreadsheet_id, name, user_id, account_id):
                tabs.append(SheetTab(id=idx, name=name))
        return tabs or [SheetTab(id=0, name=self.default_tab)]

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------
    async def read_values(
        self, spreadsheet_id: str, range: str, user_id: str, account_id: str | None = None,
    ) -> list[list[str]]:
        data = await self.execute_action(
            "GOOGLESHEETS_BATCH_GET",
            {"spreadsheet_id": spreadsheet_id, "ranges": [range]},
            user_id,
            account_id,
        )
        return normalize_grid(extract_list(data, VALUES_PATHS))

    async def write_values(
        self,
        spreadsheet_id: str,
        tab: str,
        grid: list[list[str]],
        user_id: str,
        account_id: str | None = None,
    ) -> int:
        """Clear the tab, then write ``grid`` from A1.  Returns rows written."""
        width = max((len(r) for r in grid), default=0) or 1
        height = len(grid) or 1
        clear_range = (
            f"{tab}!A1:{column_letter(max(width, CLEAR_MIN_COLUMNS) - 1)}{max(height, CLEAR_MIN_ROWS)}"
        )
        await self.execute_action(
            "GOOGLESHEETS_CLEAR_VALUES",
            {"spreadsheet_id": spreadsheet_id, "range": clear_range},
            user_id,
            account_id,
        )
        await self.execute_action(
            "GOOGLESHEETS_BATCH_UPDATE",
            {
                "spreadsheet_id": spreadsheet_id,
                "sheet_name": tab,
                "range": grid_range(tab, grid),
                "values": grid,
                "value_input_option": "RAW",
            },
            user_id,
            account_id,
        )
        return len(grid)
