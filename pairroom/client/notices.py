"""User-facing notices raised by the call client."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

INFO = "info"


@dataclass(slots=True, frozen=True)
class Notice:
    kind: str
    message: str

    @classmethod
    def from_error(cls, error: Exception) -> "Notice":
        return cls(kind=type(error).__name__, message=str(error))


NoticeCallback = Callable[[Notice], None]
