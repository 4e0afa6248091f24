"""Local camera, microphone and screen capture for one participant."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from aiortc import MediaStreamTrack

from ..core.errors import MediaAccessDenied, NegotiationFailure
from .devices import VIDEO_INPUT, CaptureStream, MediaDeviceInfo, MediaDevices

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class MediaCapabilities:
    can_switch_camera: bool = False
    has_torch: bool = False


PreviewCallback = Callable[[Optional[CaptureStream]], None]
CapabilitiesCallback = Callable[[MediaCapabilities], None]
TrackReplacer = Callable[[MediaStreamTrack], Awaitable[None]]


class MediaSourceManager:
    """Own at most one camera/microphone stream and one screen stream.

    Switching cameras and toggling screen share swap the outgoing video track
    through the bound replacer; the connection is never renegotiated here.
    """

    def __init__(
        self,
        devices: MediaDevices,
        *,
        on_preview: PreviewCallback | None = None,
        on_capabilities: CapabilitiesCallback | None = None,
    ) -> None:
        self._devices = devices
        self._on_preview = on_preview
        self._on_capabilities = on_capabilities
        self._replace_outgoing: TrackReplacer | None = None
        self.local_stream: CaptureStream | None = None
        self.screen_stream: CaptureStream | None = None
        self.flash_on = False
        self.capabilities = MediaCapabilities()
        self._epoch = 0
        self._start_lock = asyncio.Lock()
        self._restore_task: asyncio.Task[None] | None = None

    def bind_sender(self, replacer: TrackReplacer | None) -> None:
        self._replace_outgoing = replacer

    @property
    def active(self) -> bool:
        return self.local_stream is not None

    @property
    def sharing_screen(self) -> bool:
        return self.screen_stream is not None

    @property
    def camera_track(self) -> MediaStreamTrack | None:
        if self.local_stream is None:
            return None
        tracks = self.local_stream.video_tracks
        return tracks[0] if tracks else None

    @property
    def audio_track(self) -> MediaStreamTrack | None:
        if self.local_stream is None:
            return None
        tracks = self.local_stream.audio_tracks
        return tracks[0] if tracks else None

    def outgoing_tracks(self) -> list[MediaStreamTrack]:
        """Tracks to attach to a new connection, with the screen standing in for the camera."""

        if self.local_stream is None:
            return []
        tracks = self.local_stream.audio_tracks
        if self.screen_stream is not None and self.screen_stream.video_tracks:
            tracks.append(self.screen_stream.video_tracks[0])
        elif self.camera_track is not None:
            tracks.append(self.camera_track)
        return tracks

    async def start_camera(self) -> CaptureStream | None:
        """Open camera and microphone once; returns None if stopped while opening."""

        async with self._start_lock:
            if self.local_stream is not None:
                return self.local_stream
            epoch = self._epoch
            stream = await self._acquire(self._devices.get_user_media(video=True, audio=True))
            if self._epoch != epoch:
                stream.stop()
                return None
            self.local_stream = stream
        self._show(stream)
        await self.discover_capabilities()
        return stream

    def stop_all(self) -> None:
        """Release every capture handle; safe to call repeatedly."""

        self._epoch += 1
        restore, self._restore_task = self._restore_task, None
        if restore is not None:
            restore.cancel()
        screen, local = self.screen_stream, self.local_stream
        self.screen_stream = None
        self.local_stream = None
        if screen is not None:
            screen.stop()
        if local is not None:
            local.stop()
        self.flash_on = False
        if screen is not None or local is not None:
            self._show(None)
            self._publish(MediaCapabilities())

    async def discover_capabilities(self) -> MediaCapabilities:
        cameras = await self._video_inputs()
        track = self.camera_track
        has_torch = bool(track is not None and _capabilities_of(track).get("torch"))
        self._publish(MediaCapabilities(can_switch_camera=len(cameras) > 1, has_torch=has_torch))
        return self.capabilities

    async def switch_camera(self) -> bool:
        """Move to the next camera in enumeration order, wrapping around."""

        if self.local_stream is None:
            return False
        cameras = await self._video_inputs()
        if len(cameras) < 2:
            return False

        epoch, current = self._epoch, self.camera_track
        next_device = cameras[(_index_of(cameras, current) + 1) % len(cameras)]
        stream = await self._acquire(
            self._devices.get_user_media(video=True, audio=False, video_device_id=next_device.device_id)
        )
        if self._camera_changed(epoch, current):
            stream.stop()
            return False
        if not stream.video_tracks:
            stream.stop()
            raise MediaAccessDenied(f"{next_device.label} produced no video")
        new_track = stream.video_tracks[0]

        if not self.sharing_screen:
            try:
                await self._replace(new_track)
            except NegotiationFailure:
                stream.stop()
                raise
            if self._camera_changed(epoch, current):
                stream.stop()
                return False

        if current is not None:
            self.local_stream.remove_track(current)
            current.stop()
        self.local_stream.add_track(new_track)
        self.flash_on = False
        logger.info("Switched camera to %s", next_device.label)

        if not self.sharing_screen:
            self._show(self.local_stream)
        await self.discover_capabilities()
        return True

    async def start_screen_share(self) -> bool:
        if self.local_stream is None or self.screen_stream is not None:
            return False

        epoch = self._epoch
        stream = await self._acquire(self._devices.get_display_media())
        if self._epoch != epoch or self.screen_stream is not None:
            stream.stop()
            return False
        if not stream.video_tracks:
            stream.stop()
            raise MediaAccessDenied("Screen capture produced no video")
        track = stream.video_tracks[0]
        try:
            await self._replace(track)
        except NegotiationFailure:
            stream.stop()
            raise
        if self._epoch != epoch or self.screen_stream is not None:
            stream.stop()
            return False

        self.screen_stream = stream
        track.on("ended", lambda: self._on_screen_ended(stream))
        self._show(stream)
        logger.info("Screen share started")
        return True

    async def stop_screen_share(self) -> bool:
        stream = self.screen_stream
        if stream is None:
            return False
        self.screen_stream = None

        failure: NegotiationFailure | None = None
        camera = self.camera_track
        if camera is not None:
            try:
                await self._replace(camera)
            except NegotiationFailure as exc:
                failure = exc
        stream.stop()
        if self.local_stream is not None:
            self._show(self.local_stream)
        logger.info("Screen share stopped")
        if failure is not None:
            raise failure
        return True

    async def toggle_flashlight(self) -> bool:
        """Flip the torch when the active camera supports it; return the torch state."""

        track = self.camera_track
        if track is None or not _capabilities_of(track).get("torch"):
            return self.flash_on
        desired = not self.flash_on
        try:
            await track.apply_constraints({"advanced": [{"torch": desired}]})
        except MediaAccessDenied:
            raise
        except Exception as exc:  # noqa: BLE001 - camera drivers reject constraints with assorted errors
            raise MediaAccessDenied(f"Could not toggle flashlight: {exc}") from exc
        self.flash_on = desired
        return self.flash_on

    def toggle_audio(self) -> bool | None:
        """Mute or unmute the microphone; return whether it is now enabled."""

        track = self.audio_track
        if track is None:
            return None
        track.enabled = not getattr(track, "enabled", True)
        return track.enabled

    async def _acquire(self, request: Awaitable[CaptureStream]) -> CaptureStream:
        try:
            return await request
        except MediaAccessDenied:
            raise
        except Exception as exc:  # noqa: BLE001 - device backends raise assorted errors
            raise MediaAccessDenied(f"Could not access capture device: {exc}") from exc

    async def _replace(self, track: MediaStreamTrack) -> None:
        if self._replace_outgoing is not None:
            await self._replace_outgoing(track)

    def _camera_changed(self, epoch: int, camera: MediaStreamTrack | None) -> bool:
        return self._epoch != epoch or self.local_stream is None or self.camera_track is not camera

    def _on_screen_ended(self, stream: CaptureStream) -> None:
        if self.screen_stream is stream and self._restore_task is None:
            self._restore_task = asyncio.ensure_future(self._restore_camera())
            self._restore_task.add_done_callback(self._on_restore_done)

    def _on_restore_done(self, task: asyncio.Task[None]) -> None:
        if self._restore_task is task:
            self._restore_task = None
        if not task.cancelled() and task.exception() is not None:
            logger.error("Camera restore failed", exc_info=task.exception())

    async def _restore_camera(self) -> None:
        try:
            await self.stop_screen_share()
        except NegotiationFailure as exc:
            logger.warning("Could not restore camera after screen share ended: %s", exc)

    async def _video_inputs(self) -> list[MediaDeviceInfo]:
        devices = await self._devices.enumerate_devices()
        return [device for device in devices if device.kind == VIDEO_INPUT]

    def _show(self, stream: CaptureStream | None) -> None:
        if self._on_preview is not None:
            self._on_preview(stream)

    def _publish(self, capabilities: MediaCapabilities) -> None:
        self.capabilities = capabilities
        if self._on_capabilities is not None:
            self._on_capabilities(capabilities)


def _capabilities_of(track: MediaStreamTrack) -> dict:
    getter = getattr(track, "get_capabilities", None)
    return getter() if getter is not None else {}


def _index_of(cameras: list[MediaDeviceInfo], track: MediaStreamTrack | None) -> int:
    if track is None:
        return -1
    device_id = getattr(track, "device_id", None)
    label = getattr(track, "label", None)
    for index, camera in enumerate(cameras):
        if device_id is not None and camera.device_id == device_id:
            return index
    for index, camera in enumerate(cameras):
        if label is not None and camera.label == label:
            return index
    return -1
