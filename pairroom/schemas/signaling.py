"""Data contracts for the signaling channel."""
from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SignalEvent(str, enum.Enum):
    JOIN_ROOM = "join_room"
    LEAVE_ROOM = "leave_room"
    ROOM_JOINED = "room_joined"
    ROOM_LEFT = "room_left"
    ROOM_FULL = "room_full"
    WAITING_FOR_PARTNER = "waiting_for_partner"
    PARTNER_CONNECTED = "partner_connected"
    PARTNER_DISCONNECTED = "partner_disconnected"
    CHAT_MESSAGE = "chat_message"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    ERROR = "error"


NEGOTIATION_EVENTS = frozenset({SignalEvent.OFFER, SignalEvent.ANSWER, SignalEvent.ICE_CANDIDATE})


class Envelope(BaseModel):
    """Single message on the channel: an event name plus its payload."""

    type: SignalEvent
    payload: Any = None

    def to_wire(self) -> dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload}


class RoomPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    room_code: str = Field(..., alias="roomCode", description="Room code the sender addresses")


class ChatPayload(RoomPayload):
    text: str = Field(..., description="Chat text relayed to the partner")


def envelope(event: SignalEvent, payload: Any = None) -> dict[str, Any]:
    """Build a wire-ready envelope."""

    return Envelope(type=event, payload=payload).to_wire()
