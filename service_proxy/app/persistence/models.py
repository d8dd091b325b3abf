"""
Record types held by the cache store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RecordKind(str, Enum):
    """Kinds of contract reads the store keeps apart."""

    CONSTANT = "constant"
    FUNCTION_CALL = "function_call"


@dataclass(frozen=True)
class CallKey:
    """Identity of a cacheable contract read.

    Equality is structural over ``(name, args)``; ``str()`` joins the
    components with ``:`` for logs and display only.
    """

    name: str
    args: Tuple[str, ...] = ()

    def __str__(self) -> str:
        return ":".join((self.name,) + self.args)


@dataclass
class CachedRecord:
    """Most recently observed value for a call key."""

    key: CallKey
    value: str
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class BlockHeightSnapshot:
    """Point-in-time block height observation."""

    height: int
    updated_at: datetime = field(default_factory=utcnow)
