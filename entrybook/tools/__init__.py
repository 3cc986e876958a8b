"""Tool specifications and result types shared by every surface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from mcp import types

from entrybook.store import EntryStore


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Flattened outcome of one tool invocation.

    `data` carries the structured payload for local calls; results read back
    over a tool session only have `text`.
    """

    is_error: bool
    text: str
    data: Any = None

    @classmethod
    def ok(cls, text: str, data: Any = None) -> "ToolResult":
        return cls(is_error=False, text=text, data=data)

    @classmethod
    def error(cls, text: str) -> "ToolResult":
        return cls(is_error=True, text=text)


class ToolFn(Protocol):
    """Callable signature every tool implementation must follow."""

    def __call__(self, args: Optional[Mapping[str, Any]], store: EntryStore) -> ToolResult:
        ...


@dataclass(slots=True)
class ToolSpec:
    """Metadata wrapper used by the bridge to invoke tools in a uniform way."""

    tool: types.Tool
    fn: ToolFn

    @property
    def name(self) -> str:
        return self.tool.name


def to_chat_tools(tools: Sequence[types.Tool]) -> List[Dict[str, Any]]:
    """Translate tool definitions into the chat model's function-calling schema."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description or "",
                "parameters": tool.inputSchema,
            },
        }
        for tool in tools
    ]
