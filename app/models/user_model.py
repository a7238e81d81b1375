from datetime import datetime
from typing import List, Optional, Tuple
import uuid

from sqlalchemy import TIMESTAMP, Boolean, String
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin
from app.models.rbac import Role, user_roles
from app.schemas.user_schemas import UserRole

# Order used to pick a user's primary role when several are attached.
ROLE_PRECEDENCE = [
    UserRole.ADMINISTRATOR.value,
    UserRole.DOCTOR.value,
    UserRole.LAB_TECHNICIAN.value,
    UserRole.RECEPTION.value,
    UserRole.PHARMACY.value,
]


class User(TimestampMixin, Base):
    """Staff account used for authentication and role checks."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        index=True,
    )
    username: Mapped[str] = mapped_column(
        String(50), unique=True, index=True, nullable=False
    )
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[str] = mapped_column(
        String(255), unique=True, index=True, nullable=False
    )
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    roles: Mapped[List[Role]] = relationship(
        "Role",
        secondary=user_roles,
        back_populates="users",
        lazy="selectin",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_suspended: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    max_login_attempts: Mapped[int] = mapped_column(default=5, nullable=False)
    login_attempts: Mapped[int] = mapped_column(default=0, nullable=False)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username} role={self.role}>"

    @property
    def role(self) -> Optional[str]:
        """Primary role name, the one the access scope is computed from."""
        names = {role.name for role in self.roles}
        for candidate in ROLE_PRECEDENCE:
            if candidate in names:
                return candidate
        return next(iter(sorted(names)), None)

    def can_login(self) -> Tuple[bool, Optional[str]]:
        if not self.is_active:
            return False, "User account is inactive"
        if self.is_suspended:
            return False, "User account is suspended"
        if not self.roles:
            return False, "User does not have any assigned role"
        return True, None

    def register_failed_login(self) -> None:
        """Count a failed attempt and suspend once the limit is reached."""
        if self.is_suspended:
            return
        self.login_attempts += 1
        if self.login_attempts >= self.max_login_attempts:
            self.is_suspended = True

    def reset_login_attempts(self) -> None:
        self.login_attempts = 0

    def has_role(self, role_name: str) -> bool:
        return any(role.name == role_name for role in self.roles)

    def has_any_role(self, *role_names: str) -> bool:
        return any(self.has_role(name) for name in role_names)

    def has_permission(self, permission_name: str) -> bool:
        """Check if user has a specific permission through any of their roles."""
        for role in self.roles:
            for permission in role.permissions:
                if permission.name == permission_name:
                    return True
        return False

    @property
    def is_administrator(self) -> bool:
        return self.has_role(UserRole.ADMINISTRATOR.value)
