"""Expose the call client."""
from .devices import CaptureStream, DeviceTrack, MediaDeviceInfo, PlayerMediaDevices
from .media import MediaCapabilities, MediaSourceManager
from .negotiation import NegotiationController, NegotiationState
from .notices import Notice
from .session import CallSession
from .signaling import SignalingClient, connect

__all__ = [
    "CallSession",
    "CaptureStream",
    "DeviceTrack",
    "MediaCapabilities",
    "MediaDeviceInfo",
    "MediaSourceManager",
    "NegotiationController",
    "NegotiationState",
    "Notice",
    "PlayerMediaDevices",
    "SignalingClient",
    "connect",
]
