"""
Tool-session registry.

A session is created when a client connects and owns a pair of in-memory
message streams: inbound messages are read by the MCP server, replies are
written to the outbound stream for the peer. It is removed when the
connection closes:

    connecting -> open -> closed

The registry is owned by one `SessionManager` instance and every insert,
lookup and removal happens under its lock, so a message can never be routed
to a session that is closing or to a different session.
"""
from __future__ import annotations

import enum
import logging
import threading
import uuid
from typing import Any, Dict, Optional

import anyio
from mcp import types
from mcp.server.lowlevel import Server
from mcp.shared.message import SessionMessage
from pydantic import ValidationError as PydanticValidationError

from entrybook.errors import UnknownSession, ValidationError

logger = logging.getLogger(__name__)

#: Messages buffered per direction before a writer waits.
STREAM_BUFFER = 16


class SessionState(str, enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class ToolSession:
    """One connected peer: an id plus the streams between it and the server."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.state = SessionState.CONNECTING
        self.inbound_writer, self.inbound_reader = anyio.create_memory_object_stream[SessionMessage | Exception](
            STREAM_BUFFER
        )
        self.outbound_writer, self.outbound_reader = anyio.create_memory_object_stream[SessionMessage](
            STREAM_BUFFER
        )

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.OPEN

    def open(self) -> None:
        self.state = SessionState.OPEN

    def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        self.inbound_writer.close()
        self.outbound_writer.close()

    async def deliver(self, message: SessionMessage) -> None:
        """Hand an inbound message to the server; fails once the session is closed."""
        if not self.is_open:
            raise UnknownSession(self.session_id)
        try:
            await self.inbound_writer.send(message)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
            raise UnknownSession(self.session_id) from exc

    async def next_message(self) -> Optional[SessionMessage]:
        """Wait for the next outbound message; None means the session closed."""
        try:
            return await self.outbound_reader.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError):
            return None


def parse_message(payload: Any) -> SessionMessage:
    """
    Validate one JSON-RPC message posted by a peer.

    Raises
    ------
    ValidationError
        If `payload` is not a JSON-RPC request, notification or response.
    """
    try:
        message = types.JSONRPCMessage.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError("Invalid JSON-RPC message") from exc
    return SessionMessage(message)


class SessionManager:
    """Maps session ids to live sessions and routes inbound messages."""

    def __init__(self, server: Server) -> None:
        self.server = server
        self._sessions: Dict[str, ToolSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def accept(self) -> ToolSession:
        """Register a new session under a fresh id and mark it open."""
        session = ToolSession(uuid.uuid4().hex)
        with self._lock:
            self._sessions[session.session_id] = session
            session.open()
        logger.info("Tool session %s opened (%d live)", session.session_id, len(self))
        return session

    def get(self, session_id: Any) -> ToolSession:
        """
        Return the open session for `session_id`.

        Raises
        ------
        UnknownSession
            If the id was never issued or the session has been released.
        """
        with self._lock:
            session = self._sessions.get(session_id) if isinstance(session_id, str) else None
            if session is None or not session.is_open:
                raise UnknownSession(session_id)
            return session

    async def serve(self, session: ToolSession) -> None:
        """Run the MCP server over one session's streams until the session closes."""
        if not session.is_open:
            return
        try:
            await self.server.run(
                session.inbound_reader,
                session.outbound_writer,
                self.server.create_initialization_options(),
            )
        except Exception:
            if session.is_open:
                logger.exception("Tool server for session %s failed", session.session_id)
            else:
                logger.debug("Tool server for session %s stopped after close", session.session_id, exc_info=True)
        finally:
            self.release(session.session_id)

    async def dispatch(self, session_id: Any, payload: Any) -> None:
        """
        Route one inbound message to `session_id`.

        Replies are produced by the server running on that session and appear
        on its outbound stream.

        Raises
        ------
        UnknownSession
            If the session is unknown or closed.
        ValidationError
            If `payload` is not a JSON-RPC message.
        """
        try:
            session = self.get(session_id)
        except UnknownSession:
            logger.warning("Rejected message for unknown session %r", session_id)
            raise
        message = parse_message(payload)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Session %s <- %s", session_id, payload)
        await session.deliver(message)

    def release(self, session_id: str) -> None:
        """Remove and close the session. Releasing twice is a no-op."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is not None:
                session.close()
        if session is not None:
            logger.info("Tool session %s closed", session_id)

    def close_all(self) -> None:
        """Release every live session, e.g. on shutdown."""
        with self._lock:
            session_ids = list(self._sessions)
        for session_id in session_ids:
            self.release(session_id)
