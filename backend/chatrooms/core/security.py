from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from chatrooms.core.config import settings
from chatrooms.core.errors import Unauthorized

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# tokenUrl is used by the Swagger UI login form
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def get_password_hash(password: str) -> str:
    # bcrypt ignores everything past 72 bytes
    return pwd_context.hash(password[:72])


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        # federated accounts have no local password
        return False
    return pwd_context.verify(plain_password[:72], hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a bearer token; ``data["sub"]`` must carry the user id."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: Optional[str]) -> int:
    """Decode a bearer token and return the user id it was issued for."""
    if not token:
        raise Unauthorized("No token provided")
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise Unauthorized("Invalid or expired token")

    subject = payload.get("sub")
    if subject is None:
        raise Unauthorized("Invalid or expired token")
    try:
        return int(subject)
    except (TypeError, ValueError):
        raise Unauthorized("Invalid or expired token")


async def get_current_user_id(token: Optional[str] = Depends(oauth2_scheme)) -> int:
    """FastAPI dependency: resolve the caller's user id from the Authorization header."""
    return verify_token(token)


def verify_websocket_token(token: Optional[str]) -> int:
    """Validate the ``token`` query parameter of a live connection."""
    return verify_token(token)
