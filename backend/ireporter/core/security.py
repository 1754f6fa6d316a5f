import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

import bcrypt
from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings
from .database import get_db
from .exceptions import Unauthenticated
from ireporter.models.user import User

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ADMIN_ROLE = "admin"
USER_ROLE = "user"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/token", auto_error=False)


@dataclass(frozen=True)
class Caller:
    """Identity resolved from a bearer token."""

    id: str
    role: str
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # malformed hash in the database
        logger.warning("Stored password hash could not be parsed")
        return False


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def create_access_token(data: dict, secret_key: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(to_encode, secret_key, algorithm=ALGORITHM)


def create_user_token(user: User, settings: Settings) -> str:
    return create_access_token(
        {"sub": user.id, "role": user.role, "email": user.email},
        settings.SECRET_KEY,
        timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def decode_access_token(token: str, secret_key: str) -> Caller:
    try:
        payload = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info("JWT validation failed: %s", e)
        raise Unauthenticated("Invalid token")

    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or role not in (ADMIN_ROLE, USER_ROLE):
        logger.info("JWT missing 'sub' or carrying unknown role")
        raise Unauthenticated("Invalid token")
    return Caller(id=user_id, role=role, email=payload.get("email"))


async def get_current_caller(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    settings: Settings = Depends(get_settings),
) -> Caller:
    if not token:
        raise Unauthenticated("Access denied. No token provided.")
    return decode_access_token(token, settings.SECRET_KEY)


async def get_current_user(
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
) -> User:
    result = await db.execute(select(User).where(User.id == caller.id))
    user = result.scalar_one_or_none()
    if user is None:
        logger.info("Token subject %s no longer exists", caller.id)
        raise Unauthenticated("User not found")
    return user
