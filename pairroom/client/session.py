"""Call session: binds the signaling channel, negotiation and media for one participant."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from ..core.config import settings
from ..core.errors import InvalidRoomCode, PairRoomError, PartnerGone, RoomFull
from ..schemas.signaling import SignalEvent
from .devices import MediaDevices
from .media import CapabilitiesCallback, MediaSourceManager, PreviewCallback
from .negotiation import NegotiationController, PeerConnectionFactory, RemoteTrackCallback
from .notices import INFO, Notice, NoticeCallback
from .signaling import DISCONNECT, SignalingClient

logger = logging.getLogger(__name__)

ChatCallback = Callable[[str], None]


class CallSession:
    """Everything a UI needs to drive one participant's side of a room."""

    def __init__(
        self,
        signaling: SignalingClient,
        devices: MediaDevices,
        *,
        ice_servers: list[str] | None = None,
        peer_connection_factory: PeerConnectionFactory | None = None,
        on_notice: NoticeCallback | None = None,
        on_chat: ChatCallback | None = None,
        on_preview: PreviewCallback | None = None,
        on_capabilities: CapabilitiesCallback | None = None,
        on_remote_track: RemoteTrackCallback | None = None,
    ) -> None:
        self._signaling = signaling
        self._on_notice = on_notice
        self._on_chat = on_chat
        self.room_code: str | None = None
        self._requested_code: str | None = None
        self.partner_present = False
        self.connected = True
        self.media = MediaSourceManager(devices, on_preview=on_preview, on_capabilities=on_capabilities)
        self.negotiation = NegotiationController(
            self.media,
            self._send_signal,
            ice_servers=ice_servers,
            peer_connection_factory=peer_connection_factory,
            on_notice=self._notify,
            on_remote_track=on_remote_track,
        )

        handlers: dict[SignalEvent | str, Callable[[Any], Awaitable[None]]] = {
            SignalEvent.ROOM_JOINED: self._on_room_joined,
            SignalEvent.ROOM_LEFT: self._on_room_left,
            SignalEvent.ROOM_FULL: self._on_room_full,
            SignalEvent.WAITING_FOR_PARTNER: self._on_waiting_for_partner,
            SignalEvent.PARTNER_CONNECTED: self._on_partner_connected,
            SignalEvent.PARTNER_DISCONNECTED: self._on_partner_disconnected,
            SignalEvent.CHAT_MESSAGE: self._on_chat_message,
            SignalEvent.OFFER: self.negotiation.on_remote_offer,
            SignalEvent.ANSWER: self.negotiation.on_remote_answer,
            SignalEvent.ICE_CANDIDATE: self.negotiation.on_remote_candidate,
            SignalEvent.ERROR: self._on_error,
            DISCONNECT: self._on_disconnect,
        }
        for event, handler in handlers.items():
            signaling.on(event, handler)

    async def join(self, room_code: str) -> None:
        code = (room_code or "").strip().upper()
        if len(code) < settings.room_code_min_length:
            raise InvalidRoomCode(f"Please enter a room code (at least {settings.room_code_min_length} characters).")
        self._requested_code = code
        await self._signaling.send(SignalEvent.JOIN_ROOM, {"roomCode": code})

    async def leave(self) -> None:
        if self.room_code is None:
            return
        await self.negotiation.on_partner_disconnected()
        if self.connected:
            await self._signaling.send(SignalEvent.LEAVE_ROOM, {"roomCode": self.room_code})

    async def send_chat(self, text: str) -> bool:
        message = (text or "").strip()
        if not message or self.room_code is None or not self.connected:
            return False
        await self._signaling.send(SignalEvent.CHAT_MESSAGE, {"roomCode": self.room_code, "text": message})
        return True

    async def start_video(self) -> bool:
        return await self.negotiation.start_local_media()

    async def stop_video(self) -> None:
        await self.negotiation.stop()

    async def reset(self) -> None:
        """Tear everything down, as reloading the page would."""

        await self.leave()
        await self.negotiation.stop()
        self.room_code = None
        self.partner_present = False

    def toggle_audio(self) -> bool | None:
        return self.media.toggle_audio()

    async def toggle_screen_share(self) -> bool:
        if self.media.sharing_screen:
            await self._guard(self.media.stop_screen_share(), default=False)
        else:
            await self._guard(self.media.start_screen_share(), default=False)
        return self.media.sharing_screen

    async def switch_camera(self) -> bool:
        return await self._guard(self.media.switch_camera(), default=False)

    async def toggle_flashlight(self) -> bool:
        return await self._guard(self.media.toggle_flashlight(), default=self.media.flash_on)

    async def _guard(self, action: Awaitable[bool], *, default: bool) -> bool:
        try:
            return await action
        except PairRoomError as exc:
            self._notify(Notice.from_error(exc))
            return default

    async def _send_signal(self, event: SignalEvent, payload: dict) -> None:
        if self.room_code is None or not self.connected:
            logger.debug("Not in a room; dropping %s", event.value)
            return
        await self._signaling.send(event, {"roomCode": self.room_code, **payload})

    async def _on_room_joined(self, payload: Any) -> None:
        code = payload.get("roomCode") if isinstance(payload, dict) else None
        if code is not None and code == self.room_code:
            return
        if self.room_code is not None:
            await self.negotiation.on_partner_disconnected()
        self.room_code = code
        self.partner_present = False
        self.negotiation.polite = False
        self._notify(Notice(kind=INFO, message="Waiting for another person to join this room..."))

    async def _on_room_left(self, payload: Any) -> None:
        self.room_code = None
        self.partner_present = False

    async def _on_room_full(self, payload: Any) -> None:
        self._notify(Notice.from_error(RoomFull(self._requested_code or "")))

    async def _on_waiting_for_partner(self, payload: Any) -> None:
        self.negotiation.polite = True

    async def _on_partner_connected(self, payload: Any) -> None:
        self.partner_present = True
        self._notify(Notice(kind=INFO, message="Partner connected! You can now chat."))
        await self.negotiation.on_partner_connected()

    async def _on_partner_disconnected(self, payload: Any) -> None:
        self.partner_present = False
        self.negotiation.polite = True
        self._notify(Notice.from_error(PartnerGone("Partner disconnected.")))
        await self.negotiation.on_partner_disconnected()

    async def _on_chat_message(self, payload: Any) -> None:
        text = payload.get("text") if isinstance(payload, dict) else None
        if text and self._on_chat is not None:
            self._on_chat(text)

    async def _on_error(self, payload: Any) -> None:
        self._notify(Notice(kind="error", message=str(payload)))

    async def _on_disconnect(self, payload: Any) -> None:
        self.connected = False
        self.partner_present = False
        self._notify(Notice(kind=INFO, message="You have been disconnected from the server."))
        await self.negotiation.on_partner_disconnected()

    def _notify(self, notice: Notice) -> None:
        logger.info("%s: %s", notice.kind, notice.message)
        if self._on_notice is not None:
            self._on_notice(notice)

