"""Stand-ins for capture devices and the peer connection."""
from __future__ import annotations

import pytest
from aiortc import RTCSessionDescription
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

from pairroom.client.devices import AUDIO_INPUT, VIDEO_INPUT, CaptureStream, DeviceTrack, MediaDeviceInfo
from pairroom.core.errors import MediaAccessDenied

LOCAL_SDP = "\r\n".join(
    [
        "v=0",
        "o=- 1 1 IN IP4 0.0.0.0",
        "s=-",
        "t=0 0",
        "m=audio 9 UDP/TLS/RTP/SAVPF 111",
        "a=mid:0",
        "a=candidate:1 1 udp 2130706431 192.168.1.2 50000 typ host",
        "m=video 9 UDP/TLS/RTP/SAVPF 96",
        "a=mid:1",
        "a=candidate:2 1 udp 2130706431 192.168.1.2 50002 typ host",
        "",
    ]
)

REMOTE_CANDIDATE = {
    "candidate": "candidate:3 1 udp 2130706431 10.0.0.7 40000 typ host",
    "sdpMid": "0",
    "sdpMLineIndex": 0,
}


class FakeDevices:
    def __init__(self, cameras=("front", "back"), torch=("back",), deny: bool = False) -> None:
        self.cameras = list(cameras)
        self.torch = set(torch)
        self.deny = deny
        self.opened: list[DeviceTrack] = []
        self.requests: list[dict] = []

    async def enumerate_devices(self) -> list[MediaDeviceInfo]:
        devices = [MediaDeviceInfo(device_id=name, kind=VIDEO_INPUT, label=name.title()) for name in self.cameras]
        return [*devices, MediaDeviceInfo(device_id="mic", kind=AUDIO_INPUT, label="Mic")]

    async def get_user_media(self, *, video=True, audio=True, video_device_id=None) -> CaptureStream:
        self.requests.append({"video": video, "audio": audio, "video_device_id": video_device_id})
        if self.deny:
            raise MediaAccessDenied("Could not access camera/microphone.")
        tracks = []
        if video:
            device = video_device_id or self.cameras[0]
            tracks.append(
                DeviceTrack(
                    VideoStreamTrack(),
                    device_id=device,
                    label=device.title(),
                    capabilities={"deviceId": device, "torch": device in self.torch},
                )
            )
        if audio:
            tracks.append(DeviceTrack(AudioStreamTrack(), device_id="mic", label="Mic"))
        self.opened.extend(tracks)
        return CaptureStream(tracks)

    async def get_display_media(self) -> CaptureStream:
        track = DeviceTrack(VideoStreamTrack(), device_id="screen", label="Screen")
        self.opened.append(track)
        return CaptureStream([track])


class FakeSender:
    def __init__(self, track, reject: bool = False) -> None:
        self.track = track
        self.kind = track.kind
        self.reject = reject
        self.replaced: list = []

    def replaceTrack(self, track) -> None:
        if self.reject:
            raise ValueError("incompatible track")
        self.track = track
        self.replaced.append(track)


class FakePeerConnection:
    def __init__(self, configuration=None, reject_replace: bool = False) -> None:
        self.configuration = configuration
        self.reject_replace = reject_replace
        self.handlers: dict = {}
        self.senders: list[FakeSender] = []
        self.localDescription = None
        self.remoteDescription = None
        self.candidates: list = []
        self.calls: list[str] = []
        self.closed = False
        self.connectionState = "new"

    def on(self, event):
        def decorator(handler):
            self.handlers[event] = handler
            return handler

        return decorator

    def addTrack(self, track):
        sender = FakeSender(track, reject=self.reject_replace)
        self.senders.append(sender)
        return sender

    def getSenders(self):
        return list(self.senders)

    async def createOffer(self):
        self.calls.append("createOffer")
        return RTCSessionDescription(sdp=LOCAL_SDP, type="offer")

    async def createAnswer(self):
        self.calls.append("createAnswer")
        return RTCSessionDescription(sdp=LOCAL_SDP, type="answer")

    async def setLocalDescription(self, description):
        self.calls.append(f"setLocal:{description.type}")
        self.localDescription = description

    async def setRemoteDescription(self, description):
        if "bogus" in description.sdp:
            raise ValueError("Invalid SDP")
        self.calls.append(f"setRemote:{description.type}")
        self.remoteDescription = description

    async def addIceCandidate(self, candidate):
        self.calls.append("addIceCandidate")
        self.candidates.append(candidate)

    async def close(self):
        self.closed = True


class PeerConnectionFactory:
    def __init__(self, reject_replace: bool = False) -> None:
        self.reject_replace = reject_replace
        self.created: list[FakePeerConnection] = []

    def __call__(self, configuration):
        pc = FakePeerConnection(configuration, reject_replace=self.reject_replace)
        self.created.append(pc)
        return pc


@pytest.fixture
def devices() -> FakeDevices:
    return FakeDevices()


@pytest.fixture
def pc_factory() -> PeerConnectionFactory:
    return PeerConnectionFactory()


@pytest.fixture
def remote_candidate() -> dict:
    return dict(REMOTE_CANDIDATE)


@pytest.fixture
def remote_sdp() -> str:
    return LOCAL_SDP


@pytest.fixture
def make_devices():
    return FakeDevices


@pytest.fixture
def make_pc_factory():
    return PeerConnectionFactory
