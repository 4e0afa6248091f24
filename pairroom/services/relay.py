"""Signaling relay between the two members of a room."""
from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from ..core.config import settings
from ..core.errors import InvalidRoomCode, RoomFull
from ..schemas.signaling import (
    NEGOTIATION_EVENTS,
    ChatPayload,
    Envelope,
    RoomPayload,
    SignalEvent,
    envelope,
)
from .channel import ChannelHub, hub as default_hub
from .rooms import RoomRegistry

logger = logging.getLogger(__name__)


class SignalingRelay:
    """Apply admission policy and forward payloads; holds no per-message state."""

    def __init__(self, registry: RoomRegistry | None = None, channel: ChannelHub | None = None) -> None:
        self.registry = registry or RoomRegistry()
        self.channel = channel or default_hub

    async def dispatch(self, participant: str, message: Any) -> None:
        """Route one inbound envelope from a participant."""

        if not isinstance(message, dict):
            await self._error(participant, "Messages must be JSON objects")
            return
        try:
            parsed = Envelope.model_validate(message)
        except ValidationError:
            await self._error(participant, f"Unknown event: {message.get('type')!r}")
            return

        event = parsed.type
        if event is SignalEvent.JOIN_ROOM:
            await self.join_room(participant, parsed.payload)
        elif event is SignalEvent.LEAVE_ROOM:
            await self.leave_room(participant, parsed.payload)
        elif event is SignalEvent.CHAT_MESSAGE:
            await self.chat_message(participant, parsed.payload)
        elif event in NEGOTIATION_EVENTS:
            await self.forward_negotiation(participant, event, parsed.payload)
        else:
            await self._error(participant, f"Event {event.value} cannot be sent by clients")

    async def join_room(self, participant: str, payload: Any) -> None:
        room_code = payload.get("roomCode") if isinstance(payload, dict) else None
        try:
            admission = self.registry.join(room_code, participant)
        except InvalidRoomCode as exc:
            await self._error(participant, str(exc))
            return
        except RoomFull as exc:
            logger.info("Rejected %s from full room %s", participant, exc.room_code)
            await self.channel.send_to(participant, envelope(SignalEvent.ROOM_FULL))
            return

        code = admission.room_code
        if admission.already_member:
            await self.channel.send_to(participant, envelope(SignalEvent.ROOM_JOINED, {"roomCode": code}))
            return

        if admission.previous_room is not None:
            await self._depart(participant, admission.previous_room, already_left=True)

        self.channel.add_to_group(code, participant)
        logger.info("Participant %s joined room %s (%d/2)", participant, code, admission.members)
        await self.channel.send_to(participant, envelope(SignalEvent.ROOM_JOINED, {"roomCode": code}))
        if admission.members == 2:
            await self.channel.send_to_group(code, envelope(SignalEvent.PARTNER_CONNECTED))
        else:
            await self.channel.send_to(participant, envelope(SignalEvent.WAITING_FOR_PARTNER))

    async def leave_room(self, participant: str, payload: Any) -> None:
        room_code = self.registry.room_of(participant)
        if room_code is None:
            await self._error(participant, "Not in a room")
            return
        await self._depart(participant, room_code)
        await self.channel.send_to(participant, envelope(SignalEvent.ROOM_LEFT, {"roomCode": room_code}))

    async def chat_message(self, participant: str, payload: Any) -> None:
        try:
            chat = ChatPayload.model_validate(payload)
        except ValidationError:
            await self._error(participant, "roomCode and text are required")
            return

        text = chat.text.strip()
        if not chat.room_code.strip() or not text:
            await self._error(participant, "roomCode and text are required")
            return
        if len(text) > settings.chat_max_length:
            await self._error(participant, f"Message exceeds {settings.chat_max_length} characters")
            return

        room_code = await self._member_room(participant, chat.room_code)
        if room_code is None:
            return
        await self.channel.broadcast(room_code, participant, envelope(SignalEvent.CHAT_MESSAGE, {"text": text}))

    async def forward_negotiation(self, participant: str, event: SignalEvent, payload: Any) -> None:
        """Forward offer/answer/candidate payloads verbatim to the partner."""

        try:
            target = RoomPayload.model_validate(payload)
        except ValidationError:
            await self._error(participant, f"{event.value} requires roomCode")
            return

        room_code = await self._member_room(participant, target.room_code)
        if room_code is None:
            return
        await self.channel.broadcast(room_code, participant, envelope(event, payload))

    async def disconnect(self, participant: str) -> None:
        """Release everything the participant held when its connection closes."""

        room_code = self.registry.room_of(participant)
        if room_code is not None:
            await self._depart(participant, room_code)
        self.channel.unregister(participant)

    async def _depart(self, participant: str, room_code: str, *, already_left: bool = False) -> None:
        if already_left:
            remaining = len(self.registry.members(room_code))
        else:
            remaining = self.registry.leave(room_code, participant)
        self.channel.remove_from_group(room_code, participant)
        logger.info("Participant %s left room %s (%d remaining)", participant, room_code, remaining)
        if remaining:
            await self.channel.send_to_group(room_code, envelope(SignalEvent.PARTNER_DISCONNECTED))

    async def _member_room(self, participant: str, room_code: str) -> str | None:
        code = room_code.strip().upper()
        if not self.registry.is_member(code, participant):
            await self._error(participant, f"Not a member of room {code}")
            return None
        return code

    async def _error(self, participant: str, message: str) -> None:
        logger.debug("Signaling error for %s: %s", participant, message)
        await self.channel.send_to(participant, envelope(SignalEvent.ERROR, message))


relay = SignalingRelay()
