"""Room code and RTC configuration endpoints."""
from __future__ import annotations

from fastapi import APIRouter

from ..core.config import settings
from ..schemas.rooms import IceServer, RoomCodeResponse, RtcConfigResponse
from ..services.rooms import generate_room_code

router = APIRouter()


@router.post("/rooms/code", response_model=RoomCodeResponse)
async def create_room_code() -> RoomCodeResponse:
    """Return a random room code; the room itself is created on first join."""

    return RoomCodeResponse(roomCode=generate_room_code())


@router.get("/rtc/config", response_model=RtcConfigResponse)
async def rtc_config() -> RtcConfigResponse:
    return RtcConfigResponse(iceServers=[IceServer(urls=[url]) for url in settings.ice_servers])
