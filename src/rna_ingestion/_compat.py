from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import Enum

from typing_extensions import Self

UTC = timezone.utc


class StrEnum(str, Enum):  # noqa: UP042
    """str-valued Enum whose str() is the bare value, so members format cleanly in messages and traces."""

    def __str__(self) -> str:
        return self.value


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def iso_from_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=UTC).isoformat()


__all__ = ["Self", "UTC", "StrEnum", "now_ms", "iso_from_ms"]
