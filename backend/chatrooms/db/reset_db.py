import asyncio
import logging

from chatrooms.core.config import settings
from chatrooms.core.logging import setup_logging
from chatrooms.core.security import get_password_hash
from chatrooms.db.database import AsyncSessionLocal, Base, engine, seed_global_conversation
from chatrooms.db.models import conversation, message, user  # noqa: F401  (register tables)
from chatrooms.db.models.user import User

logger = logging.getLogger(__name__)

DEMO_USERS = ("alice", "bob")


async def reset_database(with_demo_users: bool = True):
    """Drop every table, recreate the schema and seed the global conversation."""
    async with engine.begin() as conn:
        logger.info("Dropping all tables")
        await conn.run_sync(Base.metadata.drop_all)
        logger.info("Creating tables")
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        await seed_global_conversation(session)
        if with_demo_users:
            password = get_password_hash("password123")
            session.add_all(
                [
                    User(username=name, password_hash=password, profile_picture=settings.default_avatar_url.format(username=name))
                    for name in DEMO_USERS
                ]
            )
            await session.commit()
            logger.info("Seeded demo users: %s", ", ".join(DEMO_USERS))

    await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(reset_database())
