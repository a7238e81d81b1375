import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import HashingError, VerificationError, VerifyMismatchError
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.api.dependencies import get_db
from app.config.config import settings
from app.core.exceptions import AuthError
from app.core.utils import logger
from app.models.rbac import Role
from app.models.user_model import User


ph = PasswordHasher(
    time_cost=3, memory_cost=65536, parallelism=1, hash_len=32, salt_len=16
)

security = HTTPBearer(
    scheme_name="Bearer Token", description="Enter your JWT token", auto_error=False
)


def get_password_hash(password: str) -> str:
    """Hash a plaintext password using Argon2"""
    try:
        return ph.hash(password)
    except HashingError as e:
        logger.log_error({"event_type": "password_hashing_failed", "error": str(e)})
        raise


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        ph.verify(hashed_password, plain_password)
        return True
    except VerifyMismatchError:
        return False
    except VerificationError as e:
        logger.log_error(
            {"event_type": "password_verification_error", "error": str(e)}
        )
        return False


def create_access_token(
    user: User, expires_delta: Optional[timedelta] = None
) -> str:
    """Issue an access token carrying the principal's id and primary role."""
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {
        "sub": str(user.id),
        "role": user.role,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise AuthError("Invalid or expired token") from e


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Resolve the authenticated principal from the bearer token.

    Raises:
        AuthError: missing, malformed or expired token, or an unknown,
            inactive or suspended account
    """
    if credentials is None:
        raise AuthError("Not authenticated")

    payload = decode_token(credentials.credentials)

    if payload.get("type") != "access":
        raise AuthError("Invalid token type")

    try:
        user_id = uuid.UUID(payload.get("sub") or "")
    except ValueError as e:
        logger.log_warning({"event_type": "invalid_auth_credentials", "error": str(e)})
        raise AuthError("Token does not contain a valid user ID") from e

    result = await db.execute(
        select(User)
        .options(selectinload(User.roles).selectinload(Role.permissions))
        .where(User.id == user_id)
    )
    user = result.scalar_one_or_none()

    if user is None:
        raise AuthError("User not found")

    allowed, reason = user.can_login()
    if not allowed:
        logger.log_security_event(
            {
                "event_type": "blocked_account_token_use",
                "user_id": str(user.id),
                "reason": reason,
            }
        )
        raise AuthError(reason)

    return user
