"""FastAPI application for the two-party room signaling server."""
from __future__ import annotations

import base64
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, Response

from . import __version__
from .core.config import settings
from .routers import rooms as rooms_router
from .routers import signaling as signaling_router

logger = logging.getLogger(__name__)

app = FastAPI(title="PairRoom Signaling API", version=__version__)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(rooms_router.router, prefix="/api", tags=["rooms"])
app.include_router(signaling_router.router, tags=["signaling"])

LANDING_TEXT = (
    "PairRoom signaling server\n"
    "Connect a WebSocket to /ws and send {\"type\": \"join_room\", \"payload\": {\"roomCode\": \"ABCD\"}}.\n"
)


@app.get("/", response_class=PlainTextResponse, tags=["meta"])
async def index() -> PlainTextResponse:
    """Describe how to reach the signaling channel."""

    return PlainTextResponse(LANDING_TEXT)


@app.head("/", tags=["meta"])
async def index_head() -> Response:
    """Fast health checks issue HEAD /; answer with 200 to avoid noisy 405s."""

    return Response(status_code=200)


FAVICON_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR4nGMAAQAABQABDQottAAAAABJRU5ErkJggg=="
)


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple liveness probe."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    return Response(status_code=200)


@app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
async def robots() -> PlainTextResponse:
    return PlainTextResponse("User-agent: *\nDisallow:")


@app.get("/favicon.ico", include_in_schema=False)
async def favicon() -> Response:
    return Response(content=FAVICON_BYTES, media_type="image/png")
