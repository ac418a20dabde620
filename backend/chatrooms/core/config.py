import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# backend/chatrooms/core/config.py -> project root .env
env_path = Path(__file__).resolve().parent.parent.parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

logger = logging.getLogger(__name__)

DEV_SECRET_KEY = "dev-secret-key-change-me"


def _database_url_from_env() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    user = os.getenv("POSTGRES_USER", "postgres")
    password = os.getenv("POSTGRES_PASSWORD", "postgres")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    name = os.getenv("POSTGRES_DB", "chatrooms")
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


def _as_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Runtime configuration read from the environment."""

    def __init__(self):
        self.secret_key = os.getenv("SECRET_KEY", DEV_SECRET_KEY)
        self.algorithm = "HS256"
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

        origins_env = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173")
        self.allowed_origins = [origin.strip() for origin in origins_env.split(",") if origin.strip()]

        self.database_url = _database_url_from_env()
        self.db_echo = _as_bool(os.getenv("DB_ECHO"))
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        self.global_conversation_name = os.getenv("GLOBAL_CONVERSATION_NAME", "Global Chat")
        self.default_avatar_url = os.getenv("DEFAULT_AVATAR_URL", "https://i.pravatar.cc/100?u={username}")

        fanout = os.getenv("LIVE_FANOUT", "members").strip().lower()
        if fanout not in ("members", "everyone"):
            logger.warning("Unknown LIVE_FANOUT=%r, falling back to 'members'", fanout)
            fanout = "members"
        self.live_fanout = fanout

    @property
    def uses_dev_secret(self) -> bool:
        return self.secret_key == DEV_SECRET_KEY


settings = Settings()
