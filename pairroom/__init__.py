"""Two-party room pairing and WebRTC signaling."""

__version__ = "0.1.0"
