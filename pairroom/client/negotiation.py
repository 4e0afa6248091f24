"""Offer/answer/ICE state machine driving one aiortc peer connection."""
from __future__ import annotations

import enum
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp

from ..core.config import settings
from ..core.errors import MediaAccessDenied, NegotiationFailure
from ..schemas.signaling import SignalEvent
from .media import MediaSourceManager
from .notices import INFO, Notice, NoticeCallback

logger = logging.getLogger(__name__)

SignalSender = Callable[[SignalEvent, dict], Awaitable[None]]
PeerConnectionFactory = Callable[[RTCConfiguration], RTCPeerConnection]
RemoteTrackCallback = Callable[[MediaStreamTrack], None]

CANDIDATE_PREFIX = "candidate:"


class NegotiationState(str, enum.Enum):
    IDLE = "idle"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    STABLE = "stable"


def parse_description(payload: Any, expected_type: str) -> RTCSessionDescription:
    """Turn a relayed ``{"type", "sdp"}`` object into a session description."""

    if not isinstance(payload, dict) or not isinstance(payload.get("sdp"), str):
        raise NegotiationFailure(f"Malformed {expected_type}: missing sdp")
    kind = payload.get("type", expected_type)
    if kind != expected_type:
        raise NegotiationFailure(f"Expected {expected_type}, got {kind}")
    return RTCSessionDescription(sdp=payload["sdp"], type=kind)


def parse_candidate(payload: dict) -> RTCIceCandidate:
    text = payload["candidate"]
    if text.startswith(CANDIDATE_PREFIX):
        text = text[len(CANDIDATE_PREFIX):]
    candidate = candidate_from_sdp(text)
    candidate.sdpMid = payload.get("sdpMid")
    candidate.sdpMLineIndex = payload.get("sdpMLineIndex")
    return candidate


def candidates_from_sdp(sdp: str) -> list[dict]:
    """Split the candidates aiortc embedded in a local description into trickle messages."""

    candidates: list[dict] = []
    sections: list[list[str]] = []
    for line in sdp.splitlines():
        if line.startswith("m="):
            sections.append([])
        elif sections:
            sections[-1].append(line)

    for index, lines in enumerate(sections):
        mid = next((line[len("a=mid:"):].strip() for line in lines if line.startswith("a=mid:")), None)
        for line in lines:
            if line.startswith("a=" + CANDIDATE_PREFIX):
                candidates.append({"candidate": line[2:].strip(), "sdpMid": mid, "sdpMLineIndex": index})
    return candidates


def _default_factory(configuration: RTCConfiguration) -> RTCPeerConnection:
    return RTCPeerConnection(configuration=configuration)


class NegotiationController:
    """Per-participant negotiation session.

    Only the methods below move ``state``; aiortc callbacks merely report
    remote tracks and connection health.
    """

    def __init__(
        self,
        media: MediaSourceManager,
        send: SignalSender,
        *,
        ice_servers: list[str] | None = None,
        peer_connection_factory: PeerConnectionFactory | None = None,
        on_notice: NoticeCallback | None = None,
        on_remote_track: RemoteTrackCallback | None = None,
    ) -> None:
        self.media = media
        self._send = send
        self._ice_servers = list(ice_servers if ice_servers is not None else settings.ice_servers)
        self._factory = peer_connection_factory or _default_factory
        self._on_notice = on_notice
        self._on_remote_track = on_remote_track
        self.state = NegotiationState.IDLE
        self.polite = False
        self.pc: Optional[RTCPeerConnection] = None
        self.pending_offer: dict | None = None
        self._remote_description_set = False
        self._queued_candidates: list[dict] = []
        media.bind_sender(self.replace_outgoing_video)

    @property
    def queued_candidates(self) -> list[dict]:
        return list(self._queued_candidates)

    async def start_local_media(self) -> bool:
        """Open camera and microphone, then answer a pending offer or send our own."""

        if self.media.active:
            return True
        try:
            stream = await self.media.start_camera()
        except MediaAccessDenied as exc:
            self._notify(Notice.from_error(exc))
            return False
        if stream is None:
            return False
        if self.pc is not None:
            return True

        if self.pending_offer is not None:
            offer, self.pending_offer = self.pending_offer, None
            try:
                description = parse_description(offer, "offer")
            except NegotiationFailure as exc:
                self._fail(exc)
                return True
            await self._answer(description)
        else:
            await self._offer()
        return True

    async def on_partner_connected(self) -> None:
        if not self.media.active:
            return
        await self._close_connection()
        await self._offer()

    async def on_partner_disconnected(self) -> None:
        self.pending_offer = None
        await self._close_connection()

    async def on_remote_offer(self, payload: Any) -> None:
        offer = payload.get("offer") if isinstance(payload, dict) else None
        if not self.media.active:
            self.pending_offer = offer
            self._queued_candidates.clear()
            self._notify(Notice(kind=INFO, message='Partner started video. Click "Start Video" to join.'))
            return

        try:
            description = parse_description(offer, "offer")
        except NegotiationFailure as exc:
            self._fail(exc)
            return
        if self.state is NegotiationState.HAVE_LOCAL_OFFER and not self.polite:
            logger.info("Ignoring colliding offer; partner yields")
            return
        await self._answer(description)

    async def on_remote_answer(self, payload: Any) -> None:
        if self.pc is None:
            return
        if self.state is not NegotiationState.HAVE_LOCAL_OFFER:
            logger.info("Dropping answer received in state %s", self.state.value)
            return
        answer = payload.get("answer") if isinstance(payload, dict) else None
        try:
            await self.pc.setRemoteDescription(parse_description(answer, "answer"))
        except Exception as exc:  # noqa: BLE001 - aiortc rejects bad SDP with several error types
            self._fail(exc)
            return
        self._remote_description_set = True
        self.state = NegotiationState.STABLE
        await self._flush_candidates()

    async def on_remote_candidate(self, payload: Any) -> None:
        candidate = payload.get("candidate") if isinstance(payload, dict) else None
        if self.pc is None and self.pending_offer is None:
            return
        if not isinstance(candidate, dict) or not candidate.get("candidate"):
            return
        if self.pc is None or not self._remote_description_set:
            self._queued_candidates.append(candidate)
            return
        await self._add_candidate(candidate)

    async def replace_outgoing_video(self, track: MediaStreamTrack) -> None:
        """Swap the track feeding the video sender without a new offer/answer."""

        if self.pc is None:
            return
        sender = next((s for s in self.pc.getSenders() if s.kind == "video"), None)
        if sender is None:
            return
        try:
            result = sender.replaceTrack(track)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # noqa: BLE001
            raise NegotiationFailure(f"Track replacement rejected: {exc}") from exc
        logger.debug("Replaced outgoing video track with %s", track.id)

    async def stop(self) -> None:
        """Close the connection and release every capture handle."""

        self.pending_offer = None
        await self._close_connection()
        self.media.stop_all()

    def _ensure_connection(self) -> RTCPeerConnection:
        if self.pc is not None:
            return self.pc

        configuration = RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in self._ice_servers])
        pc = self._factory(configuration)

        @pc.on("track")
        def on_track(track: MediaStreamTrack) -> None:
            logger.info("Receiving remote %s track", track.kind)
            if self._on_remote_track is not None:
                self._on_remote_track(track)

        @pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            logger.info("Connection state -> %s", pc.connectionState)
            if pc is self.pc and pc.connectionState == "failed":
                self._notify(Notice(kind=INFO, message="Connection to partner failed."))

        for track in self.media.outgoing_tracks():
            pc.addTrack(track)
        self.pc = pc
        self._remote_description_set = False
        return pc

    async def _offer(self) -> None:
        pc = self._ensure_connection()
        try:
            await pc.setLocalDescription(await pc.createOffer())
        except Exception as exc:  # noqa: BLE001
            self._fail(exc)
            await self._close_connection()
            return
        self.state = NegotiationState.HAVE_LOCAL_OFFER
        await self._send_local_description(SignalEvent.OFFER, "offer")

    async def _answer(self, description: RTCSessionDescription) -> None:
        """Answer on a fresh connection; the previous one survives a rejected offer."""

        previous, had_remote = self.pc, self._remote_description_set
        self.pc = None
        pc = self._ensure_connection()
        try:
            await pc.setRemoteDescription(description)
        except Exception as exc:  # noqa: BLE001
            self._fail(exc)
            self.pc, self._remote_description_set = previous, had_remote
            await pc.close()
            return
        if previous is not None:
            await previous.close()
        self._remote_description_set = True
        self.state = NegotiationState.HAVE_REMOTE_OFFER
        await self._flush_candidates()

        try:
            await pc.setLocalDescription(await pc.createAnswer())
        except Exception as exc:  # noqa: BLE001
            self._fail(exc)
            return
        self.state = NegotiationState.STABLE
        await self._send_local_description(SignalEvent.ANSWER, "answer")

    async def _send_local_description(self, event: SignalEvent, key: str) -> None:
        description = self.pc.localDescription
        await self._send(event, {key: {"type": description.type, "sdp": description.sdp}})
        for candidate in candidates_from_sdp(description.sdp):
            await self._send(SignalEvent.ICE_CANDIDATE, {"candidate": candidate})

    async def _flush_candidates(self) -> None:
        queued, self._queued_candidates = self._queued_candidates, []
        for candidate in queued:
            await self._add_candidate(candidate)

    async def _add_candidate(self, payload: dict) -> None:
        try:
            await self.pc.addIceCandidate(parse_candidate(payload))
        except Exception as exc:  # noqa: BLE001 - one bad candidate must not end the call
            logger.warning("Ignoring ICE candidate %r: %s", payload.get("candidate"), exc)

    async def _close_connection(self) -> None:
        pc, self.pc = self.pc, None
        self._remote_description_set = False
        self._queued_candidates.clear()
        self.state = NegotiationState.IDLE
        if pc is not None:
            await pc.close()

    def _fail(self, exc: Exception) -> None:
        error = exc if isinstance(exc, NegotiationFailure) else NegotiationFailure(str(exc) or type(exc).__name__)
        logger.warning("Negotiation failed in state %s: %s", self.state.value, error)
        self._notify(Notice.from_error(error))

    def _notify(self, notice: Notice) -> None:
        if self._on_notice is not None:
            self._on_notice(notice)
