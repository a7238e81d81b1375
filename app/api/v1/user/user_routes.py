import traceback
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db
from app.config.config import settings
from app.core.exceptions import AppError
from app.core.permission_checker import require_admin, require_reception_or_admin
from app.core.security import get_current_user
from app.core.utils import logger
from app.models.user_model import User
from app.schemas.user_schemas import (
    TokenResponseSchema,
    UserCreateSchema,
    UserLoginSchema,
    UserResponseSchema,
    UserRole,
)
from app.services.user_service import UserService


auth_router = APIRouter(prefix="/auth", tags=["auth"])
router = APIRouter(prefix="/users", tags=["users"])


@auth_router.post("/login", response_model=TokenResponseSchema)
async def login(
    login_data: UserLoginSchema,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Exchange a username and password for a bearer token.

    Raises:
        401: Invalid credentials, or an inactive or suspended account
    """
    ip_address = request.client.host if request.client else None
    user, access_token = await UserService(db).authenticate(
        login_data.username, login_data.password, ip_address=ip_address
    )
    return TokenResponseSchema(
        access_token=access_token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponseSchema.model_validate(user, from_attributes=True),
    )


@auth_router.get("/me", response_model=UserResponseSchema)
async def read_current_user(current_user: User = Depends(get_current_user)):
    return UserResponseSchema.model_validate(current_user, from_attributes=True)


@router.post("", response_model=UserResponseSchema, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreateSchema,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_admin()),
):
    """
    Create a staff account with a single role.

    Args:
        user_data: Credentials, contact details and role
        db: Database session
        current_user: Authenticated administrator

    Returns:
        UserResponseSchema: Created user

    Raises:
        409: Username or email already taken
        500: Internal server error
    """
    user_service = UserService(db)
    try:
        user = await user_service.create_user(user_data, created_by=current_user)
        return UserResponseSchema.model_validate(user, from_attributes=True)

    except (HTTPException, AppError):
        raise

    except ValueError as e:
        logger.log_warning(
            {
                "event": "user_creation_failed",
                "reason": "validation_error",
                "error": str(e),
            }
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    except Exception as e:
        logger.log_error(
            {
                "event": "user_creation_error",
                "error": str(e),
                "error_type": type(e).__name__,
                "traceback": traceback.format_exc(),
            }
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while creating the user",
        )


@router.get("/doctors", response_model=List[UserResponseSchema])
async def list_doctors(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_reception_or_admin()),
):
    """Active doctors, for assignment at intake."""
    doctors = await UserService(db).list_staff(UserRole.DOCTOR)
    return [UserResponseSchema.model_validate(d, from_attributes=True) for d in doctors]


@router.get("/technicians", response_model=List[UserResponseSchema])
async def list_technicians(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_reception_or_admin()),
):
    technicians = await UserService(db).list_staff(UserRole.LAB_TECHNICIAN)
    return [
        UserResponseSchema.model_validate(t, from_attributes=True) for t in technicians
    ]
