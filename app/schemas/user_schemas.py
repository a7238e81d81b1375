from enum import Enum
from pydantic import BaseModel, EmailStr, field_validator
from typing import Optional, List
import uuid
from datetime import datetime
import re


class UserRole(str, Enum):
    """Staff roles recognised by the care workflow."""

    ADMINISTRATOR = "administrator"
    RECEPTION = "reception"
    DOCTOR = "doctor"
    LAB_TECHNICIAN = "lab_technician"
    PHARMACY = "pharmacy"


class RoleSchema(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class UserCreateSchema(BaseModel):
    username: str
    email: EmailStr
    full_name: Optional[str] = None
    phone: Optional[str] = None
    password: str
    role: UserRole

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Validate username format and constraints."""
        if not v or not v.strip():
            raise ValueError("Username cannot be empty")

        v = v.strip()

        if len(v) < 3 or len(v) > 50:
            raise ValueError("Username must be between 3 and 50 characters long")

        if not re.match(r"^[a-zA-Z0-9_.-]+$", v):
            raise ValueError(
                "Username can only contain alphanumeric characters, dots, underscores, and hyphens"
            )

        return v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters long")
        return v


class UserLoginSchema(BaseModel):
    username: str
    password: str


class UserResponseSchema(BaseModel):
    id: uuid.UUID
    username: str
    email: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool
    role: Optional[str] = None
    roles: List[RoleSchema] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenResponseSchema(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponseSchema
