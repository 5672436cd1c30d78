"""stdio server mode: line-delimited JSON requests in, envelopes out.

Request:  ``{"id": "...", "command": "sheet.pull", "args": {...}}``
Response: ``{"id": "...", "ok": true, "command": ..., "result": ..., ...}``

Requests run concurrently, so responses may arrive out of order; match
them by ``id``.  A newer ``agent.send`` cancels an older one still
streaming, which then answers with ``status: "cancelled"``.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable

import orjson

from sheetops.adapters.base import SheetsBackend
from sheetops.adapters.broker import BrokerBackend
from sheetops.adapters.workbook import WorkbookBackend
from sheetops.agent.chat import AgentChat
from sheetops.agent.transport import AgentTransport
from sheetops.config import SheetOpsConfig, load_config
from sheetops.contracts.common import ResponseEnvelope
from sheetops.contracts.responses import AgentReply
from sheetops.engine import tools
from sheetops.engine.dispatcher import (
    ERR_AGENT_AUTH_REQUIRED,
    ERR_AGENT_PROTOCOL,
    ERR_INTERNAL,
    ERR_INVALID_REQUEST,
    envelope_to_dict,
    error_envelope,
    success_envelope,
)
from sheetops.engine.session import SheetSession
from sheetops.observe.events import EventEmitter

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[ResponseEnvelope]]


class _BadRequest(Exception):
    pass


def _request_error(message: str) -> dict[str, Any]:
    return {"ok": False, "errors": [{"code": ERR_INVALID_REQUEST, "message": message}]}


def _require(args: dict[str, Any], key: str) -> Any:
    value = args.get(key)
    if value is None or value == "":
        raise _BadRequest(f"Missing '{key}' in args")
    return value


class SessionServer:
    """Drives one SheetSession (and optionally an AgentChat) over stdin/stdout."""

    def __init__(self, session: SheetSession, chat: AgentChat | None = None) -> None:
        self.session = session
        self.chat = chat
        self._handlers: dict[str, Handler] = {
            "session.snapshot": self._snapshot,
            "sheet.pull": self._pull,
            "sheet.push": self._push,
            "ops.propose": self._propose,
            "ops.discard": self._discard,
            "sheet.preview": self._preview,
            "sheet.validate": self._validate,
            "cell.edit": self._cell_edit,
            "tool.run": self._tool_run,
            "column.summary": self._column_summary,
            "connection.check": self._connection_check,
            "connection.initiate": self._connection_initiate,
            "sheets.list": self._sheets_list,
            "sheets.create": self._sheets_create,
            "tabs.list": self._tabs_list,
            "agent.send": self._agent_send,
            "agent.connect": self._agent_connect,
            "agent.disconnect": self._agent_disconnect,
            "agent.clear": self._agent_clear,
            "agent.messages": self._agent_messages,
        }

    @property
    def commands(self) -> list[str]:
        return sorted(self._handlers)

    async def handle_request(self, request: dict[str, Any]) -> dict[str, Any]:
        req_id = request.get("id", "")
        command = request.get("command", "")
        args = request.get("args") or {}
        handler = self._handlers.get(command)
        if handler is None:
            env = error_envelope(command, ERR_INVALID_REQUEST, f"Unknown command: {command}")
        elif not isinstance(args, dict):
            env = error_envelope(command, ERR_INVALID_REQUEST, "'args' must be an object")
        else:
            try:
                env = await handler(args)
            except _BadRequest as exc:
                env = error_envelope(command, ERR_INVALID_REQUEST, str(exc))
            except Exception as exc:
                logger.exception("Unhandled error in %s", command)
                env = error_envelope(command, ERR_INTERNAL, str(exc))
        return {"id": req_id, **envelope_to_dict(env)}

    # ------------------------------------------------------------------
    # Sheet commands
    # ------------------------------------------------------------------
    async def _snapshot(self, args: dict[str, Any]) -> ResponseEnvelope:
        return success_envelope(
            "session.snapshot",
            {
                "state": self.session.snapshot(),
                "busy": self.session.busy,
                "last_synced_at": self.session.last_synced_at,
            },
            target=self.session.target(),
        )

    async def _pull(self, args: dict[str, Any]) -> ResponseEnvelope:
        return await self.session.pull(args.get("spreadsheet_id"), tab=args.get("tab"), range=args.get("range"))

    async def _push(self, args: dict[str, Any]) -> ResponseEnvelope:
        return await self.session.push()

    async def _propose(self, args: dict[str, Any]) -> ResponseEnvelope:
        ops = _require(args, "ops")
        if not isinstance(ops, list):
            raise _BadRequest("'ops' must be a list")
        return self.session.propose(ops)

    async def _discard(self, args: dict[str, Any]) -> ResponseEnvelope:
        return self.session.discard()

    async def _preview(self, args: dict[str, Any]) -> ResponseEnvelope:
        return self.session.preview()

    async def _validate(self, args: dict[str, Any]) -> ResponseEnvelope:
        return self.session.validate()

    async def _cell_edit(self, args: dict[str, Any]) -> ResponseEnvelope:
        value = args.get("value")
        return self.session.commit_cell_edit(
            str(_require(args, "row_id")),
            str(_require(args, "column_id")),
            "" if value is None else str(value),
        )

    async def _tool_run(self, args: dict[str, Any]) -> ResponseEnvelope:
        tool = _require(args, "tool")
        state = self.session.preview_state()
        column_id = args.get("column_id", "")
        if tool == "add_column":
            ops = tools.add_column(str(_require(args, "label")), state.columns)
        elif tool == "delete_column":
            ops = tools.delete_column(column_id)
        elif tool == "add_row":
            ops = tools.add_row(state.columns, args.get("row_id"), rows=[*self.session.base.rows, *state.rows])
        elif tool == "delete_row":
            ops = tools.delete_row(str(_require(args, "row_id")))
        elif tool == "sort":
            direction = args.get("direction", "asc")
            if direction not in ("asc", "desc"):
                raise _BadRequest("'direction' must be 'asc' or 'desc'")
            ops = tools.sort_rows(column_id, direction)
        elif tool == "remove_duplicates":
            ops = tools.remove_duplicates(state, column_id)
        elif tool == "normalize_emails":
            ops = tools.normalize_emails(state, column_id)
        elif tool == "filter":
            ops = tools.filter_rows(state, column_id, str(args.get("value", "")))
        elif tool == "summary_row":
            ops = tools.summary_row(state, column_id)
        else:
            raise _BadRequest(f"Unknown tool: {tool}")
        env = self.session.propose(ops)
        env.command = "tool.run"
        return env

    async def _column_summary(self, args: dict[str, Any]) -> ResponseEnvelope:
        column_id = str(_require(args, "column_id"))
        summary = tools.summarize_column(self.session.preview_state(), column_id)
        return success_envelope("column.summary", summary, target=self.session.target())

    # ------------------------------------------------------------------
    # Connection commands
    # ------------------------------------------------------------------
    async def _connection_check(self, args: dict[str, Any]) -> ResponseEnvelope:
        return await self.session.check_connection()

    async def _connection_initiate(self, args: dict[str, Any]) -> ResponseEnvelope:
        return await self.session.initiate_connection(str(_require(args, "redirect_url")))

    async def _sheets_list(self, args: dict[str, Any]) -> ResponseEnvelope:
        return await self.session.list_spreadsheets()

    async def _sheets_create(self, args: dict[str, Any]) -> ResponseEnvelope:
        title = args.get("title")
        if title is not None and not isinstance(title, str):
            raise _BadRequest("'title' must be a string")
        return await self.session.create_spreadsheet(title)

    async def _tabs_list(self, args: dict[str, Any]) -> ResponseEnvelope:
        return await self.session.list_tabs(args.get("spreadsheet_id"))

    # ------------------------------------------------------------------
    # Agent commands
    # ------------------------------------------------------------------
    def _require_chat(self) -> AgentChat:
        if self.chat is None:
            raise _BadRequest("No agent is configured (set SHEETOPS_AGENT_URL).")
        return self.chat

    @staticmethod
    def _reply_envelope(command: str, reply: AgentReply) -> ResponseEnvelope:
        if reply.status == "auth_required":
            return error_envelope(
                command, ERR_AGENT_AUTH_REQUIRED,
                "The agent needs access to Google Sheets. Connect your account and try again.",
                details={"run_id": reply.run_id},
            )
        if reply.status == "error":
            return error_envelope(
                command, reply.error_code or ERR_AGENT_PROTOCOL, reply.content,
                details={"run_id": reply.run_id},
            )
        return success_envelope(command, reply)

    async def _agent_send(self, args: dict[str, Any]) -> ResponseEnvelope:
        chat = self._require_chat()
        reply = await chat.send(str(_require(args, "text")))
        return self._reply_envelope("agent.send", reply)

    async def _agent_connect(self, args: dict[str, Any]) -> ResponseEnvelope:
        chat = self._require_chat()
        reply = await chat.connect_sheet(args.get("name"))
        return self._reply_envelope("agent.connect", reply)

    async def _agent_disconnect(self, args: dict[str, Any]) -> ResponseEnvelope:
        chat = self._require_chat()
        chat.disconnect_sheet()
        return success_envelope("agent.disconnect", {"messages": chat.messages})

    async def _agent_clear(self, args: dict[str, Any]) -> ResponseEnvelope:
        chat = self._require_chat()
        chat.clear()
        return success_envelope("agent.clear", {"messages": []})

    async def _agent_messages(self, args: dict[str, Any]) -> ResponseEnvelope:
        chat = self._require_chat()
        return success_envelope("agent.messages", {
            "messages": chat.messages,
            "status": chat.status,
            "connection": chat.connection,
            "connected_sheet": chat.connected_sheet,
            "auth_required": chat.auth_required,
            "run_id": chat.run_id,
        })

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------
    @staticmethod
    def _write(response: dict[str, Any]) -> None:
        sys.stdout.write(orjson.dumps(response, default=str).decode() + "\n")
        sys.stdout.flush()

    async def _respond(self, request: dict[str, Any]) -> None:
        self._write(await self.handle_request(request))

    async def run(self) -> None:
        """Read JSON lines from stdin until EOF, answering each as it completes."""
        pending: set[asyncio.Task[None]] = set()
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            try:
                request = orjson.loads(line)
            except orjson.JSONDecodeError as e:
                self._write(_request_error(f"Invalid JSON: {e}"))
                continue
            if not isinstance(request, dict):
                self._write(_request_error("Request must be an object"))
                continue
            task = asyncio.create_task(self._respond(request))
            pending.add(task)
            task.add_done_callback(pending.discard)
        if pending:
            await asyncio.gather(*pending)

    async def aclose(self) -> None:
        """Close the HTTP clients owned by the backend and the agent transport."""
        if isinstance(self.session.backend, BrokerBackend):
            await self.session.backend.aclose()
        if self.chat is not None:
            await self.chat.transport.aclose()

    async def serve(self) -> None:
        try:
            await self.run()
        finally:
            await self.aclose()


def build_backend(config: SheetOpsConfig) -> SheetsBackend:
    if config.workbook_root:
        return WorkbookBackend(config.workbook_root, default_tab=config.default_tab)
    return BrokerBackend(
        config.broker_url,
        config.broker_api_key,
        app_name=config.app_name,
        default_tab=config.default_tab,
        timeout=config.timeout_seconds,
    )


def build_server(config: SheetOpsConfig) -> SessionServer:
    events = EventEmitter(enabled=config.events)
    session = SheetSession(build_backend(config), config=config, events=events)
    chat = None
    if config.agent_url:
        chat = AgentChat(
            AgentTransport(config.agent_url, config.agent_api_key, timeout=config.timeout_seconds),
            session,
        )
    return SessionServer(session, chat)


def main() -> None:
    config = load_config()
    logging.basicConfig(
        level=logging.INFO if config.events else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(build_server(config).serve())
