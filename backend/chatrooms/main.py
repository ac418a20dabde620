import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from chatrooms.api.routers import api_router
from chatrooms.core.config import settings
from chatrooms.core.errors import register_exception_handlers
from chatrooms.core.logging import setup_logging
from chatrooms.db import database
from chatrooms.realtime.broadcaster import LiveEventBroadcaster
from chatrooms.realtime.registry import ConnectionRegistry
from chatrooms.sockets.chat_socket import router as websocket_router

logger = logging.getLogger(__name__)


def create_app(
    engine: Optional[AsyncEngine] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    registry: Optional[ConnectionRegistry] = None,
    fanout: Optional[str] = None,
) -> FastAPI:
    """Build the application with its own registry and database handles.

    Everything stateful is created here and hung off ``app.state`` so tests
    can run several independent apps in one process.
    """
    setup_logging(settings.log_level)
    if settings.uses_dev_secret:
        logger.warning("SECRET_KEY is not set; using the development signing key")

    engine = engine or database.engine
    if session_factory is None:
        session_factory = (
            database.AsyncSessionLocal if engine is database.engine else database.build_session_factory(engine)
        )
    registry = registry or ConnectionRegistry()

    app = FastAPI(title="Chat Rooms API")
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.registry = registry
    app.state.broadcaster = LiveEventBroadcaster(registry, fanout=fanout)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)

    @app.on_event("startup")
    async def on_startup():
        """Create tables and seed the global conversation."""
        await database.init_db(app.state.engine)

    @app.on_event("shutdown")
    async def on_shutdown():
        await app.state.engine.dispose()

    app.include_router(api_router)
    app.include_router(websocket_router)

    @app.get("/")
    async def root():
        return {"message": "Welcome to Chat Rooms API"}

    return app


app = create_app()
