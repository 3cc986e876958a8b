import copy
import json
import types
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union

import anyio
import pytest
from mcp.types import LATEST_PROTOCOL_VERSION
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from entrybook.protocol import build_tool_server
from entrybook.sessions import SessionManager, ToolSession
from entrybook.store import EntryStore
from entrybook.tools.bridge import LocalToolTarget


def make_tool_call(call_id: str, name: str, args: Union[Dict[str, Any], str]) -> types.SimpleNamespace:
    """Build an object shaped like a Groq tool call."""
    arguments = args if isinstance(args, str) else json.dumps(args)
    return types.SimpleNamespace(
        id=call_id,
        type="function",
        function=types.SimpleNamespace(name=name, arguments=arguments),
    )


def make_message(content: Optional[str] = None, tool_calls: Optional[List[Any]] = None) -> types.SimpleNamespace:
    """Build an object shaped like a Groq assistant message."""
    return types.SimpleNamespace(content=content, tool_calls=tool_calls)


def rpc(method: str, params: Optional[Dict[str, Any]] = None, msg_id: Optional[int] = 1) -> Dict[str, Any]:
    """Build a JSON-RPC request, or a notification when `msg_id` is None."""
    message: Dict[str, Any] = {"jsonrpc": "2.0", "method": method}
    if msg_id is not None:
        message["id"] = msg_id
    if params is not None:
        message["params"] = params
    return message


INITIALIZE_PARAMS = {
    "protocolVersion": LATEST_PROTOCOL_VERSION,
    "capabilities": {},
    "clientInfo": {"name": "tests", "version": "0"},
}


def as_dict(outgoing) -> Dict[str, Any]:
    """Wire form of a message read from a session."""
    return outgoing.message.model_dump(by_alias=True, exclude_none=True)


@asynccontextmanager
async def serving(sessions: SessionManager, session: ToolSession) -> AsyncIterator[ToolSession]:
    """Run the tool server on `session` and complete the initialize handshake."""
    async with anyio.create_task_group() as tasks:
        tasks.start_soon(sessions.serve, session)
        try:
            await sessions.dispatch(session.session_id, rpc("initialize", INITIALIZE_PARAMS, msg_id=0))
            await session.next_message()
            await sessions.dispatch(session.session_id, rpc("notifications/initialized", msg_id=None))
            yield session
        finally:
            sessions.release(session.session_id)


class ScriptedChatModel:
    """
    Chat model double returning canned assistant messages.

    `script` is either a list consumed one message per call, or a callable
    receiving the call index and returning the message.
    """

    def __init__(self, script: Union[List[Any], Callable[[int], Any]], model: str = "dummy-model"):
        self.model = model
        self._script = script
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, messages, tools):
        index = len(self.calls)
        self.calls.append({"messages": copy.deepcopy(messages), "tools": tools})
        if callable(self._script):
            return self._script(index)
        return self._script[index]


class FailingChatModel:
    model = "dummy-model"

    def __init__(self, exc: Exception):
        self._exc = exc

    async def complete(self, messages, tools):
        raise self._exc


class DummyAsyncGroq:
    """
    Minimal mock for groq.AsyncGroq that supports:
    await client.chat.completions.create(...)
    """

    def __init__(self, message: Any):
        self._message = message
        self.requests: List[Dict[str, Any]] = []
        self.chat = types.SimpleNamespace(
            completions=types.SimpleNamespace(create=self._create)
        )

    async def _create(self, **kwargs):
        self.requests.append(kwargs)
        return types.SimpleNamespace(choices=[types.SimpleNamespace(message=self._message)])


@pytest.fixture
def store(tmp_path: Path) -> EntryStore:
    return EntryStore(tmp_path / "entries.sqlite")


@pytest.fixture
def sessions(store: EntryStore) -> SessionManager:
    return SessionManager(build_tool_server(LocalToolTarget(store)))


@pytest.fixture(autouse=True)
def set_env(monkeypatch):
    """
    Automatically set the required model env var for all tests.
    """
    monkeypatch.setenv("GROQ_MODEL", "dummy-model")
    monkeypatch.delenv("MCP_AUTH_TOKEN", raising=False)
    yield
