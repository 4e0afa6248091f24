"""Capture devices backed by FFmpeg inputs through aiortc's MediaPlayer."""
from __future__ import annotations

import asyncio
import glob
import logging
import os
import platform
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Protocol

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer

from ..core.errors import MediaAccessDenied

logger = logging.getLogger(__name__)

VIDEO_INPUT = "videoinput"
AUDIO_INPUT = "audioinput"


@dataclass(slots=True, frozen=True)
class MediaDeviceInfo:
    device_id: str
    kind: str
    label: str


class DeviceTrack(MediaStreamTrack):
    """A capture track that carries device metadata and control capabilities."""

    def __init__(
        self,
        source: MediaStreamTrack,
        *,
        device_id: str,
        label: str,
        capabilities: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__()
        self.kind = source.kind
        self.device_id = device_id
        self.label = label
        self.enabled = True
        self.constraints: dict[str, Any] = {}
        self._source = source
        self._capabilities = dict(capabilities or {})

    async def recv(self):
        frame = await self._source.recv()
        if not self.enabled and self.kind == "audio":
            for plane in frame.planes:
                plane.update(bytes(plane.buffer_size))
        return frame

    def get_capabilities(self) -> dict[str, Any]:
        return dict(self._capabilities)

    async def apply_constraints(self, constraints: dict[str, Any]) -> None:
        """Record constraints after checking each advanced key is a known capability."""

        for advanced in constraints.get("advanced", []):
            unsupported = [key for key in advanced if not self._capabilities.get(key)]
            if unsupported:
                raise MediaAccessDenied(f"{self.label} does not support {', '.join(unsupported)}")
        self.constraints = dict(constraints)

    def stop(self) -> None:
        super().stop()
        self._source.stop()


class CaptureStream:
    """A group of capture tracks released together."""

    def __init__(self, tracks: Iterable[MediaStreamTrack] = ()) -> None:
        self._tracks: list[MediaStreamTrack] = list(tracks)

    @property
    def tracks(self) -> list[MediaStreamTrack]:
        return list(self._tracks)

    @property
    def audio_tracks(self) -> list[MediaStreamTrack]:
        return [track for track in self._tracks if track.kind == "audio"]

    @property
    def video_tracks(self) -> list[MediaStreamTrack]:
        return [track for track in self._tracks if track.kind == "video"]

    def add_track(self, track: MediaStreamTrack) -> None:
        if track not in self._tracks:
            self._tracks.append(track)

    def remove_track(self, track: MediaStreamTrack) -> None:
        if track in self._tracks:
            self._tracks.remove(track)

    def stop(self) -> None:
        for track in self._tracks:
            track.stop()


class MediaDevices(Protocol):
    async def enumerate_devices(self) -> list[MediaDeviceInfo]: ...

    async def get_user_media(
        self, *, video: bool = True, audio: bool = True, video_device_id: str | None = None
    ) -> CaptureStream: ...

    async def get_display_media(self) -> CaptureStream: ...


@dataclass(slots=True, frozen=True)
class _InputProfile:
    video_format: str
    audio_format: str
    audio_device: str
    display_format: str
    display_device: str
    video_device: Callable[[str], str]


_PROFILES = {
    "Linux": _InputProfile(
        video_format="v4l2",
        audio_format="pulse",
        audio_device="default",
        display_format="x11grab",
        display_device=os.environ.get("DISPLAY", ":0") + ".0",
        video_device=lambda device_id: device_id,
    ),
    "Darwin": _InputProfile(
        video_format="avfoundation",
        audio_format="avfoundation",
        audio_device="none:default",
        display_format="avfoundation",
        display_device="Capture screen 0:none",
        video_device=lambda device_id: f"{device_id}:none",
    ),
    "Windows": _InputProfile(
        video_format="dshow",
        audio_format="dshow",
        audio_device="audio=default",
        display_format="gdigrab",
        display_device="desktop",
        video_device=lambda device_id: f"video={device_id}",
    ),
}


def _natural_key(path: str) -> tuple[str, int]:
    match = re.search(r"(\d+)$", path)
    return (path[: match.start()] if match else path, int(match.group(1)) if match else -1)


def list_v4l2_devices(pattern: str = "/dev/video*") -> list[MediaDeviceInfo]:
    """List primary V4L2 capture nodes, skipping metadata nodes."""

    devices: list[MediaDeviceInfo] = []
    for node in sorted(glob.glob(pattern), key=_natural_key):
        sysfs = os.path.join("/sys/class/video4linux", os.path.basename(node))
        index = _read_text(os.path.join(sysfs, "index"))
        if index not in (None, "0"):
            continue
        label = _read_text(os.path.join(sysfs, "name")) or node
        devices.append(MediaDeviceInfo(device_id=node, kind=VIDEO_INPUT, label=label))
    return devices


def _read_text(path: str) -> str | None:
    try:
        with open(path, encoding="utf-8") as handle:
            return handle.read().strip()
    except OSError:
        return None


class PlayerMediaDevices:
    """Open cameras, microphones and screens as FFmpeg inputs.

    Linux cameras are discovered from ``/dev/video*``; elsewhere the camera
    names must be passed in because FFmpeg offers no machine-readable listing.
    Torch control is not reachable through FFmpeg inputs, so cameras opened
    here never report a ``torch`` capability.
    """

    def __init__(
        self,
        *,
        system: str | None = None,
        video_devices: Iterable[str] | None = None,
        options: dict[str, str] | None = None,
    ) -> None:
        self._system = system or platform.system()
        if self._system not in _PROFILES:
            raise MediaAccessDenied(f"Unsupported platform for capture: {self._system}")
        self._profile = _PROFILES[self._system]
        self._video_devices = list(video_devices) if video_devices is not None else None
        self._options = dict(options or {"framerate": "30", "video_size": "640x480"})

    async def enumerate_devices(self) -> list[MediaDeviceInfo]:
        if self._video_devices is not None:
            cameras = [MediaDeviceInfo(device_id=name, kind=VIDEO_INPUT, label=name) for name in self._video_devices]
        elif self._system == "Linux":
            cameras = await asyncio.get_running_loop().run_in_executor(None, list_v4l2_devices)
        else:
            cameras = [MediaDeviceInfo(device_id="0", kind=VIDEO_INPUT, label="Default camera")]
        microphone = MediaDeviceInfo(device_id=self._profile.audio_device, kind=AUDIO_INPUT, label="Default microphone")
        return [*cameras, microphone]

    async def get_user_media(
        self, *, video: bool = True, audio: bool = True, video_device_id: str | None = None
    ) -> CaptureStream:
        tracks: list[MediaStreamTrack] = []
        try:
            if video:
                camera = await self._resolve_camera(video_device_id)
                tracks.append(
                    await self._open(
                        self._profile.video_device(camera.device_id),
                        self._profile.video_format,
                        "video",
                        device_id=camera.device_id,
                        label=camera.label,
                        options=self._options,
                    )
                )
            if audio:
                tracks.append(
                    await self._open(
                        self._profile.audio_device,
                        self._profile.audio_format,
                        "audio",
                        device_id=self._profile.audio_device,
                        label="Default microphone",
                    )
                )
        except MediaAccessDenied:
            CaptureStream(tracks).stop()
            raise
        return CaptureStream(tracks)

    async def get_display_media(self) -> CaptureStream:
        track = await self._open(
            self._profile.display_device,
            self._profile.display_format,
            "video",
            device_id="screen",
            label="Screen",
            options={"framerate": self._options.get("framerate", "30")},
        )
        return CaptureStream([track])

    async def _resolve_camera(self, device_id: str | None) -> MediaDeviceInfo:
        cameras = [device for device in await self.enumerate_devices() if device.kind == VIDEO_INPUT]
        if not cameras:
            raise MediaAccessDenied("No camera found")
        if device_id is None:
            return cameras[0]
        for camera in cameras:
            if camera.device_id == device_id:
                return camera
        raise MediaAccessDenied(f"Camera {device_id} is not available")

    async def _open(
        self,
        target: str,
        fmt: str,
        kind: str,
        *,
        device_id: str,
        label: str,
        options: dict[str, str] | None = None,
    ) -> DeviceTrack:
        loop = asyncio.get_running_loop()

        def _run_player() -> MediaPlayer:
            return MediaPlayer(target, format=fmt, options=options)

        try:
            player = await loop.run_in_executor(None, _run_player)
        except Exception as exc:  # noqa: BLE001 - FFmpeg reports device errors with several types
            logger.warning("Could not open %s input %s: %s", fmt, target, exc)
            raise MediaAccessDenied(f"Could not open {label}") from exc

        source = player.video if kind == "video" else player.audio
        unused = player.audio if kind == "video" else player.video
        if unused is not None:
            unused.stop()
        if source is None:
            raise MediaAccessDenied(f"{label} produced no {kind} stream")
        logger.info("Opened %s %s (%s)", kind, label, target)
        return DeviceTrack(source, device_id=device_id, label=label, capabilities={"deviceId": device_id})
