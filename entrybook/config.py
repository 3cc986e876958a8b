"""
Central configuration for the entrybook service.
Loads environment variables from a .env file at import time.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

# --- Load .env early so everything importing config sees the vars ---
# This looks for a .env in the current working dir or parents.
load_dotenv()

#: Environment variable names
HOST_ENV = "HOST"
PORT_ENV = "PORT"
DB_PATH_ENV = "DB_PATH"
MCP_AUTH_TOKEN_ENV = "MCP_AUTH_TOKEN"
GROQ_API_KEY_ENV = "GROQ_API_KEY"
GROQ_MODEL_ENV = "GROQ_MODEL"
GROQ_BASE_URL_ENV = "GROQ_BASE_URL"
MAX_TOOL_ROUNDS_ENV = "CHAT_MAX_TOOL_ROUNDS"
MODEL_TIMEOUT_ENV = "CHAT_MODEL_TIMEOUT"
TOOL_TIMEOUT_ENV = "TOOL_CALL_TIMEOUT"
LOG_LEVEL_ENV = "LOG_LEVEL"
CORS_ORIGINS_ENV = "CORS_ALLOW_ORIGINS"

#: Defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4444
DEFAULT_GROQ_MODEL = "llama-3.3-70b-versatile"
DEFAULT_MAX_TOOL_ROUNDS = 5
DEFAULT_MODEL_TIMEOUT = 60.0
DEFAULT_TOOL_TIMEOUT = 30.0
DEFAULT_CORS_ORIGINS = ("*",)

#: Path to the SQLite database file (can be overridden in tests).
DB_PATH = Path(__file__).resolve().parent.parent / "data.sqlite"

#: Name/version announced to tool-protocol clients.
SERVER_NAME = "mcp-sqlite-server"
SERVER_VERSION = "1.0.0"


def require_env(var_name: str) -> str:
    """
    Return the value of an environment variable or raise a clear error.

    Raises
    ------
    RuntimeError
        If the environment variable is missing or empty.
    """
    try:
        value = os.environ[var_name]
    except KeyError as exc:
        raise RuntimeError(f"Required environment variable '{var_name}' is not set.") from exc
    if not value:
        raise RuntimeError(f"Environment variable '{var_name}' is empty.")
    return value


def optional_env(var_name: str) -> Optional[str]:
    """Return the variable's value, treating an empty string as unset."""
    value = os.environ.get(var_name, "").strip()
    return value or None


def _int_env(var_name: str, default: int) -> int:
    raw = optional_env(var_name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable '{var_name}' must be an integer, got {raw!r}.") from exc


def _float_env(var_name: str, default: float) -> float:
    raw = optional_env(var_name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable '{var_name}' must be a number, got {raw!r}.") from exc


def _list_env(var_name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Split a comma-separated variable, dropping blank items."""
    raw = optional_env(var_name)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip()) or default


def get_groq_api_key() -> str:
    """
    Convenience accessor specifically for the Groq API key.
    """
    return require_env(GROQ_API_KEY_ENV)


@dataclass(slots=True)
class Settings:
    """Resolved runtime settings for one server process."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    db_path: Path = DB_PATH
    auth_token: Optional[str] = None
    groq_model: str = DEFAULT_GROQ_MODEL
    groq_base_url: Optional[str] = None
    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS
    model_timeout: float = DEFAULT_MODEL_TIMEOUT
    tool_timeout: float = DEFAULT_TOOL_TIMEOUT
    log_level: str = "INFO"
    cors_origins: Tuple[str, ...] = DEFAULT_CORS_ORIGINS


def load_settings() -> Settings:
    """
    Build `Settings` from the process environment.

    Raises
    ------
    RuntimeError
        If a numeric variable cannot be parsed or the round cap is not positive.
    """
    db_override = optional_env(DB_PATH_ENV)
    max_rounds = _int_env(MAX_TOOL_ROUNDS_ENV, DEFAULT_MAX_TOOL_ROUNDS)
    if max_rounds < 1:
        raise RuntimeError(f"Environment variable '{MAX_TOOL_ROUNDS_ENV}' must be at least 1.")

    return Settings(
        host=optional_env(HOST_ENV) or DEFAULT_HOST,
        port=_int_env(PORT_ENV, DEFAULT_PORT),
        db_path=Path(db_override) if db_override else DB_PATH,
        auth_token=optional_env(MCP_AUTH_TOKEN_ENV),
        groq_model=optional_env(GROQ_MODEL_ENV) or DEFAULT_GROQ_MODEL,
        groq_base_url=optional_env(GROQ_BASE_URL_ENV),
        max_tool_rounds=max_rounds,
        model_timeout=_float_env(MODEL_TIMEOUT_ENV, DEFAULT_MODEL_TIMEOUT),
        tool_timeout=_float_env(TOOL_TIMEOUT_ENV, DEFAULT_TOOL_TIMEOUT),
        log_level=(optional_env(LOG_LEVEL_ENV) or "INFO").upper(),
        cors_origins=_list_env(CORS_ORIGINS_ENV, DEFAULT_CORS_ORIGINS),
    )
