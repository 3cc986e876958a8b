"""
Tool-protocol server for the entry tools.

Built on the low-level MCP `Server`: ``tools/list`` publishes the registry and
``tools/call`` runs a tool through a `ToolTarget`. Tool-level failures,
including unknown or empty names, are answered as ``isError`` results so the
caller can feed them back to a model.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

from mcp import types
from mcp.server.lowlevel import Server

from entrybook.config import SERVER_NAME, SERVER_VERSION
from entrybook.tools.bridge import ToolTarget, invoke
from entrybook.tools.entry_tools import list_tools

logger = logging.getLogger(__name__)


class ToolCallFailed(Exception):
    """Raised inside the call handler so the server answers with ``isError``."""


def build_tool_server(
    target: ToolTarget,
    tools: Callable[[], List[types.Tool]] = list_tools,
) -> Server:
    """
    Create the MCP server answering for `target`.

    Parameters
    ----------
    target : ToolTarget
        Where ``tools/call`` requests are executed.
    tools : Callable[[], List[types.Tool]]
        Source of the published tool definitions.
    """
    server: Server = Server(SERVER_NAME, version=SERVER_VERSION)

    @server.list_tools()
    async def _list_tools() -> List[types.Tool]:
        return tools()

    # Arguments are checked by the tool itself so clients get its exact messages.
    @server.call_tool(validate_input=False)
    async def _call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
        result = await invoke(target, name or "", arguments or {})
        if result.is_error:
            raise ToolCallFailed(result.text)
        return [types.TextContent(type="text", text=result.text)]

    return server
