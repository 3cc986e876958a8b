"""Typed argument structs for each tool and the checks that build them."""

from __future__ import annotations

import numbers
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from entrybook.errors import InvalidArgument

VALUE_NOT_INTEGER = "value must be an integer"
DESCRIPTION_REQUIRED = "description is required"
RANGE_REQUIRED = "from and to are required (ISO datetime)"


@dataclass(frozen=True, slots=True)
class StoreArgs:
    value: int
    description: str


@dataclass(frozen=True, slots=True)
class SumArgs:
    start: str
    end: str


def _whole_number(raw: Any) -> Optional[int]:
    """Return ``raw`` as an int when it is a whole number, else None. Booleans are rejected."""
    if isinstance(raw, bool) or not isinstance(raw, numbers.Real):
        return None
    if isinstance(raw, numbers.Integral):
        return int(raw)
    as_float = float(raw)
    if as_float.is_integer():
        return int(as_float)
    return None


def parse_store_args(arguments: Optional[Mapping[str, Any]]) -> StoreArgs:
    """
    Validate ``store`` arguments.

    Raises
    ------
    InvalidArgument
        With the exact client-facing message for the first violation found.
    """
    if not isinstance(arguments, Mapping):
        arguments = {}
    value = _whole_number(arguments.get("value"))
    if value is None:
        raise InvalidArgument(VALUE_NOT_INTEGER)
    description = arguments.get("description")
    if not isinstance(description, str) or not description.strip():
        raise InvalidArgument(DESCRIPTION_REQUIRED)
    return StoreArgs(value=value, description=description)


def parse_sum_args(arguments: Optional[Mapping[str, Any]]) -> SumArgs:
    """
    Validate ``sum`` arguments.

    Only presence is checked; bounds are compared as strings by the store.
    """
    if not isinstance(arguments, Mapping):
        arguments = {}
    start = arguments.get("from")
    end = arguments.get("to")
    if not start or not end:
        raise InvalidArgument(RANGE_REQUIRED)
    return SumArgs(start=str(start), end=str(end))
