from __future__ import annotations

import contextlib
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
import uvicorn
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Mount, Route, WebSocketRoute
from starlette.staticfiles import StaticFiles

from relay.messaging.router import MessageRouter
from relay.server.rate_limit import InboundLimits
from relay.server.settings import RelayServerSettings
from relay.server.websocket import websocket_endpoint
from relay.session.manager import SessionManager
from shared.build_info import APP_VERSION, GIT_COMMIT
from shared.logging import setup_logging

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.requests import Request
    from starlette.websockets import WebSocket

    from relay.session.types import SessionInfo


async def index(_request: Request) -> PlainTextResponse:
    return PlainTextResponse("Battleship relay server is running")


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", "version": APP_VERSION, "commit": GIT_COMMIT})


async def status(request: Request) -> JSONResponse:
    session_manager: SessionManager = request.app.state.session_manager
    settings: RelayServerSettings = request.app.state.settings
    sessions = session_manager.get_sessions_info()
    return JSONResponse(
        {
            "status": "ok",
            "version": APP_VERSION,
            "commit": GIT_COMMIT,
            "connections": session_manager.connection_count,
            "sessions": len(sessions),
            "max_sessions": settings.max_sessions,
            "phases": _count_by_phase(sessions),
        },
    )


def _count_by_phase(sessions: list[SessionInfo]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for info in sessions:
        counts[info.phase.value] = counts.get(info.phase.value, 0) + 1
    return counts


def create_app(
    settings: RelayServerSettings | None = None,
    session_manager: SessionManager | None = None,
    message_router: MessageRouter | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = RelayServerSettings()

    if session_manager is None:
        session_manager = SessionManager(
            default_capacity=settings.default_capacity,
            max_room_capacity=settings.max_room_capacity,
            max_sessions=settings.max_sessions,
            grace_seconds=settings.reconnect_grace_seconds,
            ttl_seconds=settings.session_ttl_seconds,
            sweep_interval=settings.sweep_interval_seconds,
            heartbeat_timeout=settings.heartbeat_timeout_seconds,
        )

    if message_router is None:
        message_router = MessageRouter(session_manager)

    limits = InboundLimits.from_settings(settings)

    async def ws_endpoint(websocket: WebSocket) -> None:
        await websocket_endpoint(websocket, message_router, limits)

    routes: list[Route | WebSocketRoute | Mount] = [
        Route("/", index, methods=["GET"], name="index"),
        Route("/health", health, methods=["GET"], name="health"),
        Route("/status", status, methods=["GET"], name="status"),
        WebSocketRoute("/ws", ws_endpoint, name="ws"),
    ]

    if settings.static_dir is not None:
        static_dir = Path(settings.static_dir)
        if static_dir.is_dir():
            routes.append(Mount("/test", app=StaticFiles(directory=str(static_dir), html=True), name="test"))
        else:
            logger.warning("static directory not found, /test will not be served", path=str(static_dir))

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncGenerator[None]:
        session_manager.start()
        yield
        await session_manager.stop()

    app = Starlette(routes=routes, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.session_manager = session_manager

    logger.info("relay server ready")
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for production use (``uvicorn --factory relay.server.app:get_app``)."""
    settings = RelayServerSettings()
    setup_logging(log_format=settings.log_format, log_level=settings.log_level, log_dir=settings.log_dir)
    return create_app(settings=settings)


def main() -> None:  # pragma: no cover
    settings = RelayServerSettings()
    uvicorn.run("relay.server.app:get_app", factory=True, host=settings.host, port=settings.port)
