from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Config
from .connections import ConnectionDirectory
from .logging_config import get_logger
from .registry import RoomRegistry
from .room_logic import MessageRouter
from .routers import status as status_router
from .routers import websockets as ws_router
from .sweeper import ExpirySweeper

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper: ExpirySweeper = app.state.sweeper
    sweeper.start()
    logger.info("Card duel server ready")
    try:
        yield
    finally:
        await sweeper.stop()
        await app.state.router.shutdown()
        logger.info("Server closed")


def create_app(config_class=Config, registry: Optional[RoomRegistry] = None) -> FastAPI:
    """Build the application and the per-instance room state it owns."""
    app = FastAPI(title="Card Duel Server", lifespan=lifespan)
    app.state.config = config_class

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config_class.CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------
    # Runtime state
    # -----------------------------

    if registry is None:
        registry = RoomRegistry(max_age_sec=config_class.ROOM_MAX_AGE_SEC)
    connections = ConnectionDirectory()
    app.state.registry = registry
    app.state.connections = connections
    app.state.router = MessageRouter(registry, connections)
    app.state.sweeper = ExpirySweeper(registry, connections, interval=config_class.SWEEP_INTERVAL_SEC)

    app.include_router(status_router.router)
    app.include_router(ws_router.router)

    return app


__all__ = ["create_app", "lifespan"]
