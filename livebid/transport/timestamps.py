"""Timestamp helpers enforcing canonical ISO-8601 formatting and age checks."""

from __future__ import annotations

from datetime import datetime, timezone


class TimestampError(ValueError):
    """Raised when timestamps are malformed or outside the permitted window."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    if not value or not isinstance(value, str):
        raise TimestampError("timestamp missing")
    try:
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
    except ValueError as exc:  # pragma: no cover - delegated to datetime
        raise TimestampError("timestamp is not ISO-8601 compatible") from exc
    if dt.tzinfo is None:
        raise TimestampError("timestamp must include timezone information")
    return dt.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def assert_fresh(
    timestamp: str,
    *,
    max_age_seconds: int,
    max_skew_ms: int,
    now: datetime | None = None,
) -> datetime:
    """Parse an issue timestamp and ensure it is neither too old nor from the future."""
    dt = parse_timestamp(timestamp)
    ref = now or utcnow()
    age_ms = (ref - dt).total_seconds() * 1000
    if age_ms < -max_skew_ms:
        raise TimestampError(
            f"timestamp is {-age_ms:.1f}ms in the future, max skew {max_skew_ms}ms"
        )
    if age_ms > max_age_seconds * 1000:
        raise TimestampError(f"timestamp older than {max_age_seconds}s")
    return dt
