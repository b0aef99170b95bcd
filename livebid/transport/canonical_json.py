"""JSON helpers: canonical bytes for signed claims, wire/storage encoding for everything else."""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import orjson

_CANONICAL_OPTIONS = orjson.OPT_SORT_KEYS | orjson.OPT_STRICT_INTEGER | orjson.OPT_NAIVE_UTC
_WIRE_OPTIONS = orjson.OPT_NAIVE_UTC | orjson.OPT_UTC_Z


def _default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def canonical_dumps(payload: Any) -> bytes:
    """Return canonical JSON bytes with sorted keys and stable formatting."""
    return orjson.dumps(payload, default=_default, option=_CANONICAL_OPTIONS)


def dumps(payload: Any) -> bytes:
    return orjson.dumps(payload, default=_default, option=_WIRE_OPTIONS)


def dumps_text(payload: Any) -> str:
    return dumps(payload).decode("utf-8")


def loads(raw: bytes | bytearray | str) -> Any:
    return orjson.loads(raw)
