"""
Short-lived tool-session client.

Opens a session on a `SessionManager`, runs the MCP server on it and talks to
that server with an MCP `ClientSession` over the session's streams. Use it as
an async context manager so the session is released however the caller exits.
"""
from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from datetime import timedelta
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

import anyio
from mcp import ClientSession, types
from mcp.shared.exceptions import McpError

from entrybook.config import SERVER_VERSION
from entrybook.errors import UpstreamFailure
from entrybook.sessions import SessionManager, ToolSession

logger = logging.getLogger(__name__)

CLIENT_NAME = "entrybook-chat"

T = TypeVar("T")


class ToolSessionClient:
    """MCP client bound to one tool session."""

    def __init__(self, sessions: SessionManager, *, timeout: Optional[float] = None) -> None:
        self.sessions = sessions
        self.timeout = timeout
        self.server_info: Optional[types.Implementation] = None
        self._session: Optional[ToolSession] = None
        self._client: Optional[ClientSession] = None
        self._stack: Optional[AsyncExitStack] = None

    @property
    def session_id(self) -> Optional[str]:
        return self._session.session_id if self._session else None

    async def __aenter__(self) -> "ToolSessionClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open a session, start its server and perform the initialize handshake."""
        stack = AsyncExitStack()
        session = self.sessions.accept()
        stack.callback(self.sessions.release, session.session_id)
        self._stack, self._session = stack, session
        try:
            tasks = await stack.enter_async_context(anyio.create_task_group())
            stack.callback(tasks.cancel_scope.cancel)
            tasks.start_soon(self.sessions.serve, session)

            read_timeout = timedelta(seconds=self.timeout) if self.timeout else None
            self._client = await stack.enter_async_context(
                ClientSession(
                    session.outbound_reader,
                    session.inbound_writer,
                    read_timeout_seconds=read_timeout,
                    client_info=types.Implementation(name=CLIENT_NAME, version=SERVER_VERSION),
                )
            )
            initialized = await self._guard("initialize", self._client.initialize())
            self.server_info = initialized.serverInfo
        except BaseException:
            await self.close()
            raise

    async def close(self) -> None:
        stack, self._stack = self._stack, None
        self._client = None
        self._session = None
        if stack is not None:
            # Closed without the caller's exception so it is never wrapped by task groups.
            await stack.aclose()

    async def list_tools(self) -> List[types.Tool]:
        result = await self._guard("tools/list", self._connected().list_tools())
        return list(result.tools)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> types.CallToolResult:
        return await self._guard("tools/call", self._connected().call_tool(name, arguments))

    def _connected(self) -> ClientSession:
        if self._client is None:
            raise UpstreamFailure("Tool session is not connected")
        return self._client

    async def _guard(self, method: str, call: Awaitable[T]) -> T:
        """
        Await one request, mapping transport and protocol failures.

        Raises
        ------
        UpstreamFailure
            On timeout, a closed session, or an error reply.
        """
        try:
            return await call
        except McpError as exc:
            raise UpstreamFailure(f"Tool session request '{method}' failed: {exc.error.message}") from exc
        except (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream) as exc:
            raise UpstreamFailure(f"Tool session closed during '{method}'") from exc
