"""WebSocket client for the signaling channel."""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, AsyncIterator, Awaitable, Callable, Dict
from urllib.parse import urlencode

import websockets

from ..core.config import settings
from ..schemas.signaling import SignalEvent, envelope

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[None]]

DISCONNECT = "disconnect"


class SignalingClient:
    """Send envelopes and dispatch received ones to per-event handlers.

    Handlers run one at a time in arrival order, so an offer is fully applied
    before the candidates that follow it.
    """

    def __init__(self, ws: Any) -> None:
        self._ws = ws
        self._handlers: Dict[str, EventHandler] = {}
        self._receive_task: asyncio.Task[None] | None = None

    def on(self, event: SignalEvent | str, handler: EventHandler) -> None:
        key = event.value if isinstance(event, SignalEvent) else event
        self._handlers[key] = handler

    async def __aenter__(self) -> "SignalingClient":
        self._receive_task = asyncio.create_task(self._receive_loop())
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._receive_task:
            self._receive_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._receive_task
        await self._ws.close()

    async def send(self, event: SignalEvent, payload: Any = None) -> None:
        await self._ws.send(json.dumps(envelope(event, payload)))

    async def wait_closed(self) -> None:
        if self._receive_task:
            with suppress(asyncio.CancelledError):
                await self._receive_task

    async def _receive_loop(self) -> None:
        try:
            async for message in self._ws:
                if isinstance(message, bytes):
                    continue
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Discarding non-JSON signaling message")
                    continue
                if not isinstance(data, dict):
                    continue
                await self._dispatch(data.get("type"), data.get("payload"))
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed as exc:
            logger.info("Signaling connection closed: %s", exc)
        await self._dispatch(DISCONNECT, None)

    async def _dispatch(self, event: Any, payload: Any) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("No handler for signaling event %r", event)
            return
        try:
            await handler(payload)
        except Exception:  # noqa: BLE001 - keep the channel alive for later events
            logger.exception("Handler for %s failed", event)


@asynccontextmanager
async def connect(url: str | None = None, *, participant_id: str | None = None) -> AsyncIterator[SignalingClient]:
    """Open the signaling WebSocket and run its receive loop for the block's duration."""

    target = url or settings.signaling_url
    if participant_id:
        separator = "&" if "?" in target else "?"
        target = f"{target}{separator}{urlencode({'participant_id': participant_id})}"
    async with websockets.connect(target) as ws:
        async with SignalingClient(ws) as client:
            yield client
