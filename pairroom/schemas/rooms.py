"""Data contracts for room and RTC configuration endpoints."""
from __future__ import annotations

from pydantic import BaseModel, Field


class RoomCodeResponse(BaseModel):
    roomCode: str = Field(..., description="Freshly generated base-36 room code")


class IceServer(BaseModel):
    urls: list[str] = Field(..., description="STUN/TURN URLs")


class RtcConfigResponse(BaseModel):
    iceServers: list[IceServer] = Field(default_factory=list)
