"""
Invocation bridge: one entry point for running a tool wherever it lives.

- `LocalToolTarget` executes against the entry store in a worker thread.
- `SessionToolTarget` forwards ``tools/call`` over an open tool session and
  flattens the returned content into a single `ToolResult`.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping, Optional, Protocol

from fastapi.concurrency import run_in_threadpool
from mcp import types

from entrybook.store import EntryStore
from entrybook.tools import ToolResult
from entrybook.tools.entry_tools import run_tool

if TYPE_CHECKING:  # pragma: no cover
    from entrybook.client import ToolSessionClient

logger = logging.getLogger(__name__)


class ToolTarget(Protocol):
    async def call_tool(self, name: str, arguments: Optional[Mapping[str, Any]]) -> ToolResult:
        ...


class LocalToolTarget:
    """Run tools in-process against an `EntryStore`."""

    def __init__(self, store: EntryStore) -> None:
        self.store = store

    async def call_tool(self, name: str, arguments: Optional[Mapping[str, Any]]) -> ToolResult:
        return await run_in_threadpool(run_tool, name, arguments, self.store)


class SessionToolTarget:
    """Run tools through a connected tool-session client."""

    def __init__(self, client: "ToolSessionClient") -> None:
        self.client = client

    async def call_tool(self, name: str, arguments: Optional[Mapping[str, Any]]) -> ToolResult:
        result = await self.client.call_tool(name, dict(arguments or {}))
        return flatten_call_result(result)


def flatten_call_result(result: types.CallToolResult) -> ToolResult:
    """
    Collapse a ``tools/call`` result into one text payload.

    Text parts are joined with newlines; when there are none the whole result
    is serialized as JSON instead.
    """
    parts = [item.text for item in result.content if isinstance(item, types.TextContent) and item.text]
    text = "\n".join(parts).strip()
    if not text:
        text = result.model_dump_json(by_alias=True, exclude_none=True)
    return ToolResult(is_error=bool(result.isError), text=text)


async def invoke(target: ToolTarget, name: str, arguments: Optional[Mapping[str, Any]]) -> ToolResult:
    """Invoke `name` on `target`; tool-level failures come back as error results."""
    result = await target.call_tool(name, arguments)
    logger.info("Tool %s finished (is_error=%s)", name, result.is_error)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("Tool %s args=%s output=%s", name, arguments, result.text)
    return result
