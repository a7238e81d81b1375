from typing import List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from app.models.rbac import Role
from app.models.user_model import User


class UserRepository:
    """Repository layer for staff accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        result = await self.db.execute(
            select(User)
            .options(selectinload(User.roles).selectinload(Role.permissions))
            .where(User.id == user_id)
        )
        return result.scalars().first()

    async def get_user_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(
            select(User)
            .options(selectinload(User.roles).selectinload(Role.permissions))
            .where(User.username == username)
        )
        return result.scalars().first()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalars().first()

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        result = await self.db.execute(select(Role).where(Role.name == name))
        return result.scalars().first()

    async def list_users_with_role(
        self, role_name: str, active_only: bool = True
    ) -> List[User]:
        query = select(User).where(User.roles.any(Role.name == role_name))
        if active_only:
            query = query.where(User.is_active == True)
        result = await self.db.execute(query.order_by(User.username))
        return list(result.scalars().all())

    async def create_user(self, user: User) -> User:
        self.db.add(user)
        await self.db.flush()
        return user
