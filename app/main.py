"""
RP Wager main application entry point.
FastAPI service exposing duels and the jackpot, with a WebSocket event feed.
"""

import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, Optional

# Add parent directory to path so imports work when running directly
if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent.parent))

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
import orjson as json
import uvicorn

from app.config import settings
from app.core.exceptions import WagerError
from app.core.logger import init_logging, get_logger
from app.core.scheduler import WagerScheduler
from app.core.wagering import WagerSystem
from app.core.websocket import ws_manager
from app.routers import admin, api

# Initialize logging first
init_logging(
    level=settings.logging.level,
    log_to_file=settings.logging.log_to_file,
    formatter=settings.logging.formatter,
    log_file_path=settings.paths.get_log_path(),
)
logger = get_logger("main")
ws_logger = get_logger("websocket")


def default_wager_factory() -> WagerSystem:
    return WagerSystem.from_settings(settings, WagerScheduler())


# ==================== Application Setup ====================


def create_app(wager_factory: Optional[Callable[[], WagerSystem]] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        wager_factory: Builds the WagerSystem at startup (tests inject fakes)
    """
    factory = wager_factory or default_wager_factory

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        wager = factory()
        wager.ctx.subscribe(ws_manager.publish)
        wager.ctx.scheduler.start()
        wager.startup()
        app.state.wager = wager
        try:
            yield
        finally:
            wager.shutdown()
            wager.ctx.scheduler.shutdown()
            wager.ctx.unsubscribe(ws_manager.publish)

    app = FastAPI(
        title=settings.server.name,
        docs_url="/docs" if settings.server.debug else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_exception_handler(WagerError, wager_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(api.router, prefix="/api")
    app.include_router(admin.router, prefix="/admin")

    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_websocket_route("/ws", websocket_endpoint)

    return app


# ==================== Handlers ====================


async def health(request: Request):
    wager = getattr(request.app.state, "wager", None)
    return {
        "status": "ok" if wager is not None and wager.started else "starting",
        "websocket_clients": ws_manager.get_connection_count(),
        "persist_failures": wager.ctx.persist_failures if wager else 0,
    }


async def wager_error_handler(request: Request, exc: WagerError):
    """Engine errors carry their own status code and machine-readable code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions gracefully."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "detail": str(exc) if settings.server.debug else None,
        },
    )


async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for wager events.
    Clients may send:
    - {"type": "ping"}
    - {"type": "subscribe" | "unsubscribe", "topic": "duels" | "jackpot"}
    """
    await ws_manager.connect(websocket)
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            data = frame.get("bytes") or frame.get("text")
            if not data:
                continue
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if not isinstance(message, dict):
                continue

            msg_type = message.get("type")
            if msg_type == "ping":
                await websocket.send_bytes(json.dumps({"type": "pong"}))
            elif msg_type == "subscribe" and message.get("topic"):
                await ws_manager.subscribe(websocket, message["topic"])
            elif msg_type == "unsubscribe" and message.get("topic"):
                await ws_manager.unsubscribe(websocket, message["topic"])

    except WebSocketDisconnect as e:
        ws_manager.disconnect(websocket)
        ws_logger.info("WebSocket closed", extra={"ws_disconnect_code": e.code})


app = create_app()

logger.info(f"Application '{settings.server.name}' initialized")


# ==================== Main Entry Point ====================

if __name__ == "__main__":
    logger.info(f"Starting server on {settings.server.host}:{settings.server.port}")
    uvicorn.run(
        "app.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.debug,
    )
