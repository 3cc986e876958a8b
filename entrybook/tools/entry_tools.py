"""The `store` and `sum` tools and the registry built from them."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from mcp import types

from entrybook.errors import InvalidArgument, UnknownTool
from entrybook.store import EntryStore
from entrybook.tools import ToolResult, ToolSpec
from entrybook.tools.arguments import parse_store_args, parse_sum_args

logger = logging.getLogger(__name__)

STORE_TOOL = types.Tool(
    name="store",
    description="Store an integer value with description and timestamp",
    inputSchema={
        "type": "object",
        "properties": {
            "value": {"type": "integer"},
            "description": {"type": "string"},
        },
        "required": ["value", "description"],
    },
)

SUM_TOOL = types.Tool(
    name="sum",
    description="Sum values between ISO datetime range [from, to]",
    inputSchema={
        "type": "object",
        "properties": {
            "from": {"type": "string"},
            "to": {"type": "string"},
        },
        "required": ["from", "to"],
    },
)


def _store_tool(args: Optional[Mapping[str, Any]], store: EntryStore) -> ToolResult:
    parsed = parse_store_args(args)
    entry = store.insert(parsed.value, parsed.description)
    payload = entry.to_dict()
    return ToolResult.ok(json.dumps(payload, separators=(",", ":")), data=payload)


def _sum_tool(args: Optional[Mapping[str, Any]], store: EntryStore) -> ToolResult:
    parsed = parse_sum_args(args)
    total = store.sum_in_range(parsed.start, parsed.end)
    return ToolResult.ok(str(total), data=total)


def _build_tool_registry() -> Dict[str, ToolSpec]:
    return {
        "store": ToolSpec(tool=STORE_TOOL, fn=_store_tool),
        "sum": ToolSpec(tool=SUM_TOOL, fn=_sum_tool),
    }


TOOL_REGISTRY: Dict[str, ToolSpec] = _build_tool_registry()


def list_tools() -> List[types.Tool]:
    """Return the tool definitions in registration order."""
    return [spec.tool for spec in TOOL_REGISTRY.values()]


def run_tool(name: str, args: Optional[Mapping[str, Any]], store: EntryStore) -> ToolResult:
    """
    Validate and execute one tool against the store.

    Argument violations and unknown names come back as error results, never
    as exceptions. Unexpected failures are logged and reported the same way.
    """
    spec = TOOL_REGISTRY.get(name)
    if spec is None:
        return ToolResult.error(UnknownTool(name).detail)
    try:
        return spec.fn(args, store)
    except InvalidArgument as exc:
        return ToolResult.error(exc.detail)
    except Exception as exc:
        logger.exception("Tool '%s' failed", name)
        return ToolResult.error(f"Tool '{name}' failed: {exc}")
