"""Agent chat session.

Folds streamed reply chunks into the newest assistant message, watches
for the ``AUTH_REQUIRED`` sentinel after every chunk, and proposes the
operations parsed from a completed reply to the ``SheetSession``.  A new
turn cancels whichever turn is still in flight.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Awaitable, Literal

from pydantic import BaseModel

from sheetops.agent.parser import (
    build_context_message,
    parse_agent_response,
    parse_connection_confirmation,
)
from sheetops.agent.transport import AgentError, AgentProtocolError, AgentTransport
from sheetops.contracts.responses import AgentReply, SpreadsheetRef
from sheetops.engine.dispatcher import ERR_INVALID_REQUEST, ERR_NO_SPREADSHEET
from sheetops.engine.session import SheetSession, is_real_spreadsheet_id

logger = logging.getLogger(__name__)

AUTH_REQUIRED = "AUTH_REQUIRED"
ERROR_REPLY = "Sorry, something went wrong. Please try again."
CONNECT_FAILED_REPLY = "Failed to connect to the agent. Please try again."
DISCONNECTED_REPLY = "Disconnected from sheet. Select another sheet and connect to continue editing."
NO_SHEET_REPLY = "Select a spreadsheet before connecting the agent."

ChatStatus = Literal["idle", "thinking", "streaming", "auth_required"]
ConnectionState = Literal["idle", "connecting", "confirmed", "failed"]


class ChatMessage(BaseModel):
    id: str
    role: Literal["user", "assistant"]
    content: str = ""
    streaming: bool = False


def _message_id() -> str:
    return uuid.uuid4().hex


class AgentChat:
    """Conversation with the hosted agent about one session's sheet."""

    def __init__(self, transport: AgentTransport, session: SheetSession) -> None:
        self.transport = transport
        self.session = session
        self.messages: list[ChatMessage] = []
        self.run_id: str | None = None
        self.auth_required = False
        self.status: ChatStatus = "idle"
        self.connection: ConnectionState = "idle"
        self.connected_sheet: SpreadsheetRef | None = None
        self._task: asyncio.Task[AgentReply] | None = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def cancel(self) -> None:
        """Abort the in-flight turn, if any, and wait for it to unwind."""
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

    async def _run_exclusive(self, coro: Awaitable[AgentReply]) -> AgentReply:
        await self.cancel()
        task: asyncio.Task[AgentReply] = asyncio.ensure_future(coro)
        self._task = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            return AgentReply(status="cancelled", run_id=self.run_id)
        finally:
            if self._task is task:
                self._task = None

    def _emit(self, event: str, data: dict[str, Any]) -> None:
        self.session.events.emit(event, data)

    async def _stream_reply(self, message: str, reply: ChatMessage) -> str | None:
        """Stream one turn into ``reply``; None when the agent asked for authorization."""
        accumulated = ""
        stream = self.transport.stream(message, run_id=self.run_id, user_id=self.session.user_id)
        async with stream as (run_id, chunks):
            if run_id:
                self.run_id = run_id
            self.status = "streaming"
            async for chunk in chunks:
                accumulated += chunk
                if accumulated.strip() == AUTH_REQUIRED:
                    self.messages = [m for m in self.messages if m.id != reply.id]
                    self.auth_required = True
                    self.status = "auth_required"
                    self._emit("agent.auth_required", {"run_id": self.run_id})
                    return None
                reply.content = accumulated
                self._emit("agent.chunk", {"message_id": reply.id, "length": len(accumulated)})
        return accumulated

    def _open_turn(self, text: str) -> ChatMessage:
        reply = ChatMessage(id=_message_id(), role="assistant", streaming=True)
        self.messages.extend([ChatMessage(id=_message_id(), role="user", content=text), reply])
        self.status = "thinking"
        self.auth_required = False
        return reply

    # ------------------------------------------------------------------
    # Chat turns
    # ------------------------------------------------------------------
    async def send(self, text: str) -> AgentReply:
        """Send a user message; parsed operations are proposed with author ``agent``."""
        if not text.strip():
            return AgentReply(
                status="error", content="Message is empty.", run_id=self.run_id, error_code=ERR_INVALID_REQUEST,
            )
        return await self._run_exclusive(self._send(text))

    async def _send(self, text: str) -> AgentReply:
        reply = self._open_turn(text)
        try:
            content = await self._stream_reply(text, reply)
        except asyncio.CancelledError:
            reply.streaming = False
            self.status = "idle"
            raise
        except AgentError as exc:
            logger.warning("Agent turn failed: %s (%s)", exc.message, exc.details)
            reply.content = ERROR_REPLY
            reply.streaming = False
            self.status = "idle"
            return AgentReply(
                status="error", content=ERROR_REPLY, run_id=self.run_id, error_code=exc.code,
            )
        if content is None:
            return AgentReply(status="auth_required", run_id=self.run_id)

        reply.streaming = False
        self.status = "idle"
        current = self.session.preview_state()
        ops = parse_agent_response(content, current.columns, current.rows)
        if ops:
            self.session.propose(ops, author="agent")
        self._emit("agent.done", {"message_id": reply.id, "operations": len(ops)})
        return AgentReply(status="ok", content=content, run_id=self.run_id, operations=ops)

    # ------------------------------------------------------------------
    # Sheet connection
    # ------------------------------------------------------------------
    async def connect_sheet(self, spreadsheet_name: str | None = None) -> AgentReply:
        """Send the sheet CONTEXT and wait for the agent's confirmation block."""
        sheet_id = self.session.spreadsheet_id
        if not is_real_spreadsheet_id(sheet_id):
            return AgentReply(
                status="error", content=NO_SHEET_REPLY, run_id=self.run_id, error_code=ERR_NO_SPREADSHEET,
            )
        return await self._run_exclusive(self._connect(sheet_id, spreadsheet_name))

    def _connect_failed(self) -> None:
        self.connection = "failed"
        self.connected_sheet = None
        self.messages.append(ChatMessage(id=_message_id(), role="assistant", content=CONNECT_FAILED_REPLY))

    async def _connect(self, sheet_id: str, spreadsheet_name: str | None) -> AgentReply:
        name = spreadsheet_name or f"Sheet {sheet_id[:8]}..."
        self.connection = "connecting"
        self.connected_sheet = SpreadsheetRef(id=sheet_id, name=name)
        current = self.session.preview_state()
        context = build_context_message(
            spreadsheet_id=sheet_id,
            spreadsheet_name=name,
            tab_name=self.session.tab,
            account_id=self.session.account_id or self.session.user_id,
            columns=current.columns,
            rows=current.rows,
        )
        reply = self._open_turn(json.dumps(context, indent=2))
        try:
            content = await self._stream_reply(json.dumps(context), reply)
            if content is not None and not parse_connection_confirmation(content):
                raise AgentProtocolError("Agent did not confirm the sheet connection.", details=content[:500])
        except asyncio.CancelledError:
            reply.streaming = False
            self.status = "idle"
            self.connection = "idle"
            self.connected_sheet = None
            raise
        except AgentError as exc:
            logger.warning("Agent connection failed: %s (%s)", exc.message, exc.details)
            reply.streaming = False
            self.status = "idle"
            self._connect_failed()
            return AgentReply(
                status="error", content=CONNECT_FAILED_REPLY, run_id=self.run_id, error_code=exc.code,
            )
        if content is None:
            self.connection = "failed"
            self.connected_sheet = None
            return AgentReply(status="auth_required", run_id=self.run_id)

        reply.streaming = False
        self.status = "idle"
        self.connection = "confirmed"
        return AgentReply(status="ok", content=content, run_id=self.run_id)

    def disconnect_sheet(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self.connected_sheet = None
        self.connection = "idle"
        self.run_id = None
        self.status = "idle"
        self.messages = [ChatMessage(id=_message_id(), role="assistant", content=DISCONNECTED_REPLY)]

    def clear(self) -> None:
        self.messages = []
        self.run_id = None
        self.auth_required = False
        self.status = "idle"

    def clear_auth_required(self) -> None:
        self.auth_required = False
        if self.status == "auth_required":
            self.status = "idle"
