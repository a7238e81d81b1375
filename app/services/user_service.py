from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AuthError, ConflictError, ValidationError
from app.core.security import create_access_token, get_password_hash, verify_password
from app.core.utils import logger
from app.db.base import utcnow
from app.db.transaction import atomic
from app.models.user_model import User
from app.repositories.user_repo import UserRepository
from app.schemas.user_schemas import UserCreateSchema, UserRole

INVALID_CREDENTIALS = "Invalid username or password"


class UserService:
    """Service layer for staff accounts and authentication."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = UserRepository(self.db)

    async def create_user(
        self, user_data: UserCreateSchema, created_by: Optional[User] = None
    ) -> User:
        """
        Create a staff account holding exactly one role.

        Raises:
            ConflictError: username or email already taken
            ValidationError: the role has not been seeded
        """
        async with atomic(self.db, conflict_message="Username or email already exists"):
            if await self.repo.get_user_by_username(user_data.username):
                raise ConflictError("Username already exists")
            if await self.repo.get_user_by_email(user_data.email):
                raise ConflictError("Email already exists")

            role = await self.repo.get_role_by_name(user_data.role.value)
            if not role:
                raise ValidationError(f"Role '{user_data.role.value}' is not initialised")

            user_dict = user_data.model_dump(exclude={"password", "role"})
            user_dict["password"] = get_password_hash(user_data.password)
            user = await self.repo.create_user(User(**user_dict, roles=[role]))

        logger.log_info(
            {
                "event_type": "user_created",
                "user_id": str(user.id),
                "username": user.username,
                "role": role.name,
                "created_by": str(created_by.id) if created_by else None,
            }
        )
        return user

    async def authenticate(
        self, username: str, password: str, ip_address: Optional[str] = None
    ) -> Tuple[User, str]:
        """
        Verify credentials and issue an access token.

        Failed attempts are counted on the account; reaching the limit
        suspends it.
        """
        async with atomic(self.db):
            user = await self.repo.get_user_by_username(username.strip())
            if not user:
                logger.log_security_event(
                    {
                        "event_type": "login_failed",
                        "reason": "unknown_user",
                        "username": username,
                        "ip_address": ip_address,
                    }
                )
                raise AuthError(INVALID_CREDENTIALS)

            allowed, reason = user.can_login()
            if not allowed:
                logger.log_security_event(
                    {
                        "event_type": "login_blocked",
                        "user_id": str(user.id),
                        "reason": reason,
                        "ip_address": ip_address,
                    }
                )
                raise AuthError(reason)

            if not verify_password(password, user.password):
                user.register_failed_login()
                failed = True
            else:
                user.reset_login_attempts()
                user.last_login_at = utcnow()
                failed = False

        if failed:
            logger.log_security_event(
                {
                    "event_type": "login_failed",
                    "reason": "bad_password",
                    "user_id": str(user.id),
                    "attempts": user.login_attempts,
                    "suspended": user.is_suspended,
                    "ip_address": ip_address,
                }
            )
            raise AuthError(INVALID_CREDENTIALS)

        logger.log_info(
            {"event_type": "login_succeeded", "user_id": str(user.id), "role": user.role}
        )
        return user, create_access_token(user)

    async def list_staff(self, role: UserRole) -> List[User]:
        """Active staff holding ``role``, e.g. doctors for the intake form."""
        return await self.repo.list_users_with_role(role.value)
