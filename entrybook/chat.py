"""
Chat orchestration: lets a Groq-hosted model call the entry tools.

Round loop
1) open a short-lived tool session and fetch the tool list
2) send the conversation + tool schema to the model
3) no tool calls -> return the model's text
4) otherwise run each requested call in order over the session, append the
   assistant turn and one `tool` turn per call, and go again
5) stop with a fixed message once the round cap is reached
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from groq import AsyncGroq

from entrybook.client import ToolSessionClient
from entrybook.config import DEFAULT_MAX_TOOL_ROUNDS, get_groq_api_key
from entrybook.errors import UpstreamFailure, ValidationError
from entrybook.sessions import SessionManager
from entrybook.tools import ToolResult, to_chat_tools
from entrybook.tools.bridge import SessionToolTarget, invoke

logger = logging.getLogger(__name__)

MAX_ROUNDS_SENTINEL = "stopped after max tool iterations"
CHAT_ROLES = {"user", "assistant", "tool"}


class ChatModel(Protocol):
    """What the orchestrator needs from a chat provider."""

    model: str

    async def complete(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> Any:
        """Return the assistant message (``content`` plus optional ``tool_calls``)."""
        ...


class GroqChatModel:
    """`ChatModel` backed by Groq's OpenAI-compatible chat completions."""

    def __init__(
        self,
        model: str,
        *,
        client: Optional[AsyncGroq] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self.model = model
        self._client = client or self._build_groq(base_url)

    @staticmethod
    def _build_groq(base_url: Optional[str]) -> AsyncGroq:
        """Return an async Groq client; a missing key raises RuntimeError."""
        kwargs: Dict[str, Any] = {"api_key": get_groq_api_key()}
        if base_url:
            kwargs["base_url"] = base_url
        return AsyncGroq(**kwargs)

    async def complete(self, messages: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> Any:
        completion = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,
            tools=tools,
            tool_choice="auto",
        )
        return completion.choices[0].message


@dataclass(slots=True)
class ToolLog:
    """One executed tool call as reported back to the chat client."""

    name: str
    args: Any
    output: str

    def to_dict(self) -> Dict[str, Any]:
        """Wire form used in the `toolLogs` array."""
        return {"name": self.name, "args": self.args, "output": self.output}


@dataclass(slots=True)
class ChatReply:
    """
    Final outcome of one chat request.

    `rounds` and `exhausted` are not part of the response body; they are
    logged per request and let callers tell a capped run from a real answer.
    """

    content: str
    model: str
    tool_logs: List[ToolLog] = field(default_factory=list)
    rounds: int = 0
    exhausted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": "assistant",
            "content": self.content,
            "model": self.model,
            "toolLogs": [log.to_dict() for log in self.tool_logs],
        }


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read `name` from either a mapping or an SDK object."""
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def build_turns(body: Any) -> List[Dict[str, Any]]:
    """
    Turn a chat request body into the initial conversation.

    Accepts ``{"message": str}`` or ``{"messages": [turn, ...]}``.

    Raises
    ------
    ValidationError
        If neither form is present or a turn is malformed.
    """
    if not isinstance(body, Mapping):
        raise ValidationError("request body must be a JSON object")

    messages = body.get("messages")
    if messages is not None:
        if not isinstance(messages, list) or not messages:
            raise ValidationError("messages must be a non-empty array")
        turns = []
        for index, turn in enumerate(messages):
            if not isinstance(turn, Mapping) or turn.get("role") not in CHAT_ROLES:
                raise ValidationError(f"messages[{index}] must have a role of user, assistant or tool")
            content = turn.get("content")
            if content is None:
                content = ""
            if not isinstance(content, str):
                raise ValidationError(f"messages[{index}].content must be a string")
            turns.append({**turn, "content": content})
        return turns

    message = body.get("message")
    if isinstance(message, str) and message.strip():
        return [{"role": "user", "content": message}]
    raise ValidationError("message or messages is required")


class ChatOrchestrator:
    """Drives the bounded model <-> tool conversation for one request at a time."""

    def __init__(
        self,
        model: ChatModel,
        sessions: SessionManager,
        *,
        max_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
        model_timeout: Optional[float] = None,
        tool_timeout: Optional[float] = None,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.model = model
        self.sessions = sessions
        self.max_rounds = max_rounds
        self.model_timeout = model_timeout
        self.tool_timeout = tool_timeout

    async def run(self, turns: Sequence[Mapping[str, Any]]) -> ChatReply:
        """
        Run the conversation to a final answer or until the round cap is reached.

        Raises
        ------
        UpstreamFailure
            If the tool session cannot be used or the model call fails.
        """
        history: List[Dict[str, Any]] = [dict(turn) for turn in turns]
        logs: List[ToolLog] = []

        async with ToolSessionClient(self.sessions, timeout=self.tool_timeout) as client:
            tools = to_chat_tools(await client.list_tools())
            target = SessionToolTarget(client)

            for round_no in range(1, self.max_rounds + 1):
                message = await self._complete(history, tools)
                tool_calls = list(_field(message, "tool_calls") or [])
                logger.info("Chat round %d: %d tool call(s) requested", round_no, len(tool_calls))
                if not tool_calls:
                    return ChatReply(
                        content=_field(message, "content") or "",
                        model=self.model.model,
                        tool_logs=logs,
                        rounds=round_no,
                    )

                tool_turns = []
                for call in tool_calls:
                    name, args, result = await self._run_call(target, call)
                    logs.append(ToolLog(name=name, args=args, output=result.text))
                    tool_turns.append({"role": "tool", "tool_call_id": _field(call, "id"), "content": result.text})

                history.append(self._assistant_turn(message, tool_calls))
                history.extend(tool_turns)

        logger.warning("Chat stopped after %d rounds without a final answer", self.max_rounds)
        return ChatReply(
            content=MAX_ROUNDS_SENTINEL,
            model=self.model.model,
            tool_logs=logs,
            rounds=self.max_rounds,
            exhausted=True,
        )

    async def _complete(self, history: List[Dict[str, Any]], tools: List[Dict[str, Any]]) -> Any:
        try:
            return await asyncio.wait_for(self.model.complete(history, tools), self.model_timeout)
        except asyncio.TimeoutError as exc:
            raise UpstreamFailure("Chat model call timed out") from exc
        except UpstreamFailure:
            raise
        except Exception as exc:
            logger.exception("Chat model call failed")
            raise UpstreamFailure(f"Chat model call failed: {exc}") from exc

    async def _run_call(self, target: SessionToolTarget, call: Any) -> tuple[str, Any, ToolResult]:
        function = _field(call, "function")
        name = _field(function, "name") or ""
        raw_args = _field(function, "arguments") or ""
        try:
            args = json.loads(raw_args) if raw_args else {}
        except (TypeError, ValueError) as exc:
            return name, raw_args, ToolResult.error(f"Invalid JSON arguments for {name}: {exc}")
        if not isinstance(args, dict):
            return name, args, ToolResult.error(f"Arguments for {name} must be a JSON object")
        return name, args, await invoke(target, name, args)

    @staticmethod
    def _assistant_turn(message: Any, tool_calls: List[Any]) -> Dict[str, Any]:
        """Re-emit the assistant message with its tool calls as plain dicts."""
        calls = []
        for call in tool_calls:
            function = _field(call, "function")
            calls.append(
                {
                    "id": _field(call, "id"),
                    "type": _field(call, "type") or "function",
                    "function": {
                        "name": _field(function, "name") or "",
                        "arguments": _field(function, "arguments") or "",
                    },
                }
            )
        return {"role": "assistant", "content": _field(message, "content") or "", "tool_calls": calls}
