import logging
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from chatrooms.core.config import settings

logger = logging.getLogger(__name__)

GLOBAL_CONVERSATION_ID = 1


class Base(DeclarativeBase):
    pass


def build_engine(url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    url = url or settings.database_url
    echo = settings.db_echo if echo is None else echo
    if url.startswith("sqlite"):
        # aiosqlite connections are cheap; a pool would tie them to one event loop
        return create_async_engine(url, echo=echo, poolclass=NullPool)
    return create_async_engine(url, echo=echo, pool_pre_ping=True)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session from the factory the app was built with."""
    session_factory = getattr(request.app.state, "session_factory", AsyncSessionLocal)
    async with session_factory() as session:
        yield session


async def seed_global_conversation(session: AsyncSession) -> None:
    from chatrooms.db.models.conversation import Conversation

    existing = await session.get(Conversation, GLOBAL_CONVERSATION_ID)
    if existing is None:
        session.add(
            Conversation(
                id=GLOBAL_CONVERSATION_ID,
                name=settings.global_conversation_name,
                is_global=True,
            )
        )
        await session.flush()
        if session.bind.dialect.name == "postgresql":
            # the explicit id does not advance the serial sequence
            await session.execute(
                text(
                    "SELECT setval(pg_get_serial_sequence('conversations', 'id'), "
                    "(SELECT MAX(id) FROM conversations))"
                )
            )
        await session.commit()
        logger.info("Seeded global conversation (id=%s)", GLOBAL_CONVERSATION_ID)
        return

    if not existing.is_global:
        existing.is_global = True
        await session.commit()


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create tables and make sure the global conversation exists."""
    # register every model on Base.metadata
    from chatrooms.db.models import conversation, message, user  # noqa: F401

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = build_session_factory(bind)
    async with session_factory() as session:
        await seed_global_conversation(session)


async def ping(session: AsyncSession) -> None:
    await session.execute(select(1))
