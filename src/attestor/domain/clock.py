"""Injectable time source shared by the registry and the reconciliation loop."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol


class Clock(Protocol):
    def __call__(self) -> datetime: ...


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("Timestamps must include timezone information")
    return value.astimezone(UTC)


def from_unix_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def to_unix_ms(value: datetime) -> int:
    return int(ensure_aware(value).timestamp() * 1000)
