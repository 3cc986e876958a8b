"""Error taxonomy shared by the REST, tool-protocol and chat surfaces."""

from __future__ import annotations


class EntrybookError(Exception):
    """Base class; `kind` is the machine-readable tag sent to clients."""

    kind = "internal_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(EntrybookError):
    """Bad tool arguments or a malformed request body."""

    kind = "validation_error"


#: Name used for tool-argument violations.
InvalidArgument = ValidationError


class UnknownSession(EntrybookError):
    """A message referenced a session id that was never issued or is closed."""

    kind = "unknown_session"

    def __init__(self, session_id: object) -> None:
        super().__init__(f"No transport for sessionId {session_id!r}")
        self.session_id = session_id


class UnknownTool(EntrybookError):
    """The requested tool name is not in the registry."""

    kind = "unknown_tool"

    def __init__(self, name: object) -> None:
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class UpstreamFailure(EntrybookError):
    """The chat model or the tool-session transport failed."""

    kind = "upstream_failure"

    def __init__(self, detail: str, *, status_code: int = 502) -> None:
        super().__init__(detail)
        self.status_code = status_code
