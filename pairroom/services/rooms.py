"""In-memory two-party room registry."""
from __future__ import annotations

import re
import secrets
import string
from dataclasses import dataclass
from typing import Dict, Optional, Set

from ..core.config import settings
from ..core.errors import InvalidRoomCode, RoomFull

MAX_MEMBERS = 2
ROOM_CODE_ALPHABET = string.digits + string.ascii_uppercase
_ROOM_CODE_PATTERN = re.compile(r"^[0-9A-Z_-]+$")


@dataclass(slots=True, frozen=True)
class AdmissionResult:
    room_code: str
    members: int
    previous_room: str | None = None
    already_member: bool = False


def generate_room_code(length: int | None = None) -> str:
    """Return a random base-36 room code."""

    size = length or settings.room_code_length
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(size))


class RoomRegistry:
    """Own the room table and the participant-to-room lookup.

    Every mutation is a plain dict/set operation with no awaits, so callers on
    one event loop never observe a half-applied join or leave.
    """

    def __init__(self, min_code_length: int | None = None, max_code_length: int | None = None) -> None:
        self._min_length = min_code_length if min_code_length is not None else settings.room_code_min_length
        self._max_length = max_code_length if max_code_length is not None else settings.room_code_max_length
        self._rooms: Dict[str, Set[str]] = {}
        self._room_by_participant: Dict[str, str] = {}

    def normalize(self, room_code: object) -> str:
        """Return the canonical form of a room code or raise InvalidRoomCode."""

        if not isinstance(room_code, str):
            raise InvalidRoomCode("Room code is required")
        code = room_code.strip().upper()
        if not code:
            raise InvalidRoomCode("Room code is required")
        if len(code) < self._min_length:
            raise InvalidRoomCode(f"Room code must be at least {self._min_length} characters")
        if len(code) > self._max_length:
            raise InvalidRoomCode(f"Room code must be at most {self._max_length} characters")
        if not _ROOM_CODE_PATTERN.match(code):
            raise InvalidRoomCode("Room code may only contain letters, digits, '-' and '_'")
        return code

    def join(self, room_code: object, participant: str) -> AdmissionResult:
        """Admit a participant, creating the room on first join."""

        code = self.normalize(room_code)
        members = self._rooms.get(code, set())
        if participant in members:
            return AdmissionResult(room_code=code, members=len(members), already_member=True)
        if len(members) >= MAX_MEMBERS:
            raise RoomFull(code)

        previous = self._room_by_participant.get(participant)
        if previous is not None:
            self.leave(previous, participant)

        self._rooms.setdefault(code, set()).add(participant)
        self._room_by_participant[participant] = code
        return AdmissionResult(room_code=code, members=len(self._rooms[code]), previous_room=previous)

    def leave(self, room_code: str, participant: str) -> int:
        """Remove a participant and return the remaining member count."""

        members = self._rooms.get(room_code)
        if not members or participant not in members:
            return 0
        members.discard(participant)
        if self._room_by_participant.get(participant) == room_code:
            del self._room_by_participant[participant]
        if not members:
            del self._rooms[room_code]
            return 0
        return len(members)

    def peers_of(self, room_code: str, exclude: Optional[str] = None) -> set[str]:
        return {member for member in self._rooms.get(room_code, ()) if member != exclude}

    def members(self, room_code: str) -> frozenset[str]:
        return frozenset(self._rooms.get(room_code, ()))

    def room_of(self, participant: str) -> str | None:
        return self._room_by_participant.get(participant)

    def is_member(self, room_code: str, participant: str) -> bool:
        return participant in self._rooms.get(room_code, ())

    def __contains__(self, room_code: object) -> bool:
        return room_code in self._rooms

    def __len__(self) -> int:
        return len(self._rooms)
