"""WebSocket signaling endpoint."""
from __future__ import annotations

import json
import logging
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..schemas.signaling import SignalEvent, envelope
from ..services.channel import ChannelConnection
from ..services.relay import relay

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket) -> None:
    """Bind one socket to a participant identity and feed its messages to the relay."""

    participant_id = websocket.query_params.get("participant_id") or uuid4().hex
    await websocket.accept()

    if relay.channel.is_connected(participant_id):
        await websocket.send_json(envelope(SignalEvent.ERROR, "participant_id already connected"))
        await websocket.close(code=1008)
        return

    relay.channel.register(ChannelConnection(connection_id=participant_id, send=websocket.send_json))
    logger.info("Participant %s connected", participant_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json(envelope(SignalEvent.ERROR, "Invalid JSON"))
                continue
            await relay.dispatch(participant_id, message)
    except WebSocketDisconnect:
        pass
    finally:
        await relay.disconnect(participant_id)
        logger.info("Participant %s disconnected", participant_id)
