from fastapi import Depends, Request

from app.core.exceptions import ForbiddenError
from app.core.security import get_current_user
from app.core.utils import logger
from app.models.user_model import User
from app.schemas.user_schemas import UserRole


def _client_host(request: Request) -> str:
    if request is not None and request.client:
        return getattr(request.client, "host", "unknown")
    return "unknown"


def require_permission(*perms: str):
    """
    Dependency factory to enforce permissions (user needs at least one).

    Usage:
        current_user: User = Depends(require_permission("payment.settle"))
    """

    async def checker(
        request: Request,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if not any(current_user.has_permission(perm) for perm in perms):
            logger.log_security_event(
                {
                    "event_type": "unauthorized_access_attempt",
                    "user_id": str(current_user.id),
                    "required_permissions": list(perms),
                    "path": request.url.path,
                    "ip_address": _client_host(request),
                }
            )
            raise ForbiddenError(
                f"Access denied. Requires at least one of these permissions: {', '.join(perms)}"
            )
        return current_user

    return checker


def require_role(*roles: str):
    """
    Dependency factory to enforce roles (user needs at least one).

    Usage:
        current_user: User = Depends(require_role("doctor", "administrator"))
    """

    async def checker(
        request: Request,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if not current_user.has_any_role(*roles):
            logger.log_security_event(
                {
                    "event_type": "unauthorized_role_access_attempt",
                    "user_id": str(current_user.id),
                    "required_roles": list(roles),
                    "user_roles": [role.name for role in current_user.roles],
                    "path": request.url.path,
                    "ip_address": _client_host(request),
                }
            )
            raise ForbiddenError(
                f"Access denied. Requires at least one of these roles: {', '.join(roles)}"
            )

        logger.log_debug(
            {
                "event_type": "access_granted_role",
                "user_id": str(current_user.id),
                "granted_roles": [r for r in roles if current_user.has_role(r)],
            }
        )
        return current_user

    return checker


def require_admin():
    return require_role(UserRole.ADMINISTRATOR.value)


def require_reception_or_admin():
    return require_role(UserRole.RECEPTION.value, UserRole.ADMINISTRATOR.value)


def require_doctor_or_admin():
    return require_role(UserRole.DOCTOR.value, UserRole.ADMINISTRATOR.value)


def require_lab_or_admin():
    return require_role(UserRole.LAB_TECHNICIAN.value, UserRole.ADMINISTRATOR.value)


def require_pharmacy_or_admin():
    return require_role(UserRole.PHARMACY.value, UserRole.ADMINISTRATOR.value)


def require_price_reader():
    return require_role(
        UserRole.ADMINISTRATOR.value, UserRole.RECEPTION.value, UserRole.DOCTOR.value
    )


def require_result_reader():
    return require_role(
        UserRole.DOCTOR.value, UserRole.LAB_TECHNICIAN.value, UserRole.ADMINISTRATOR.value
    )
