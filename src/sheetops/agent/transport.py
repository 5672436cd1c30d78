"""Streaming HTTP transport to the hosted agent.

A turn is a POST to the agent URL (new conversation) or a PUT to
``<agent_url>/<run_id>`` (continuation).  The reply body is streamed as
text; the run id for the next turn comes back in a response header.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from sheetops.engine.dispatcher import ERR_AGENT_PROTOCOL, ERR_TRANSPORT

logger = logging.getLogger(__name__)

RUN_ID_HEADER = "X-Toolhouse-Run-ID"


class AgentError(Exception):
    """An agent turn failed."""

    code = ERR_AGENT_PROTOCOL

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class AgentTransportError(AgentError):
    """Network failure or non-2xx status from the agent."""

    code = ERR_TRANSPORT


class AgentProtocolError(AgentError):
    """The agent answered, but not in the shape the flow expects."""

    code = ERR_AGENT_PROTOCOL


class AgentTransport:
    def __init__(
        self,
        url: str,
        api_key: str = "",
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @staticmethod
    async def _chunks(response: httpx.Response) -> AsyncIterator[str]:
        async for text in response.aiter_text():
            if text:
                yield text

    @asynccontextmanager
    async def stream(
        self,
        message: str,
        *,
        run_id: str | None = None,
        user_id: str = "anonymous",
    ) -> AsyncIterator[tuple[str | None, AsyncIterator[str]]]:
        """Open one agent turn; yields ``(run_id, chunks)``.

        Raises AgentTransportError on connect/read failures and non-2xx
        responses, including failures while the chunks are consumed.
        """
        if run_id:
            method, url = "PUT", f"{self.url}/{run_id}"
        else:
            method, url = "POST", self.url
        payload = {"message": message, "user_id": user_id or "anonymous"}
        try:
            async with self._client.stream(method, url, json=payload, headers=self._headers()) as response:
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.warning("Agent request failed: %s %s", response.status_code, body[:200])
                    raise AgentTransportError(
                        f"Agent request failed: HTTP {response.status_code}", details=body[:500],
                    )
                yield response.headers.get(RUN_ID_HEADER) or None, self._chunks(response)
        except httpx.HTTPError as exc:
            raise AgentTransportError("Failed to reach the agent.", details=str(exc)) from exc
