"""Error taxonomy shared by the signaling server and the call client."""
from __future__ import annotations


class PairRoomError(Exception):
    """Base class for user-visible pairing and call failures."""


class InvalidRoomCode(PairRoomError):
    """Raised when a join request carries a malformed room code."""


class RoomFull(PairRoomError):
    """Raised when a room already holds two participants."""

    def __init__(self, room_code: str) -> None:
        super().__init__(f"Room {room_code} is full")
        self.room_code = room_code


class MediaAccessDenied(PairRoomError):
    """Raised when a camera, microphone or screen cannot be captured."""


class NegotiationFailure(PairRoomError):
    """Raised when a session description or track change is rejected."""


class PartnerGone(PairRoomError):
    """Raised when the remote participant left mid-negotiation."""
