"""
RBAC Initialization Utility

Seeds the staff roles and their permissions. Idempotent: existing rows are
reused and only missing role/permission links are added.
"""

from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.utils import logger
from app.models.rbac import Permission, Role
from app.schemas.user_schemas import UserRole


DEFAULT_PERMISSIONS = {
    # Patients
    "patient.register": "Register patients with their consultation payment",
    "patient.read": "View patient records",
    # Payments
    "payment.create": "Record direct payments",
    "payment.settle": "Settle pending payments",
    "payment.cancel": "Cancel payments",
    "payment.read": "View payments",
    # Care episode
    "assignment.create": "Assign a patient to a doctor",
    "assignment.read": "View doctor assignments",
    "dossier.manage": "Complete and archive owned dossiers",
    "consultation.write": "Author consultations",
    "prescription.write": "Write prescriptions",
    # Ancillary requests
    "request.create": "Order lab and imaging exams",
    "request.assign": "Assign technicians to requests",
    "request.fulfil": "Record, validate and send results",
    "result.read": "Read delivered results",
    # Pricing
    "price.read": "Read the active consultation price",
    "price.manage": "Set consultation prices and view history",
    # Pharmacy
    "pharmacy.sell": "Sell pharmacy products",
    # Administration
    "user.manage": "Create and manage staff accounts",
}


DEFAULT_ROLES = {
    UserRole.ADMINISTRATOR.value: {
        "description": "Hospital administrator with full access",
        "permissions": list(DEFAULT_PERMISSIONS.keys()),
    },
    UserRole.RECEPTION.value: {
        "description": "Front desk: registration, payments and staffing",
        "permissions": [
            "patient.register",
            "patient.read",
            "payment.create",
            "payment.settle",
            "payment.cancel",
            "payment.read",
            "assignment.create",
            "assignment.read",
            "request.assign",
            "price.read",
        ],
    },
    UserRole.DOCTOR.value: {
        "description": "Physician owning dossiers and consultations",
        "permissions": [
            "patient.read",
            "assignment.read",
            "dossier.manage",
            "consultation.write",
            "prescription.write",
            "request.create",
            "result.read",
            "price.read",
        ],
    },
    UserRole.LAB_TECHNICIAN.value: {
        "description": "Lab and imaging technician",
        "permissions": ["patient.read", "request.fulfil"],
    },
    UserRole.PHARMACY.value: {
        "description": "Pharmacy counter",
        "permissions": ["patient.read", "pharmacy.sell"],
    },
}


async def create_permission(
    db: AsyncSession, name: str, description: Optional[str] = None
) -> Permission:
    result = await db.execute(select(Permission).where(Permission.name == name))
    permission = result.scalar_one_or_none()
    if permission is not None:
        return permission

    permission = Permission(name=name, description=description)
    db.add(permission)
    await db.flush()
    logger.log_debug({"event_type": "permission_created", "permission_name": name})
    return permission


async def create_role(
    db: AsyncSession,
    name: str,
    permissions: Optional[List[str]] = None,
    description: Optional[str] = None,
) -> Role:
    """
    Create a role if it doesn't exist and link the named permissions.

    Unknown permission names are skipped.
    """
    result = await db.execute(select(Role).where(Role.name == name))
    role = result.scalar_one_or_none()

    if role is None:
        role = Role(name=name, description=description, permissions=[])
        db.add(role)
        await db.flush()
        logger.log_info({"event_type": "role_created", "role_name": name})

    for perm_name in permissions or []:
        result = await db.execute(
            select(Permission).where(Permission.name == perm_name)
        )
        permission = result.scalar_one_or_none()
        if permission and permission not in role.permissions:
            role.permissions.append(permission)

    await db.flush()
    return role


async def initialize_rbac(db: AsyncSession) -> Dict[str, Role]:
    """
    Ensure every default permission and role exists.

    Called on application startup and by the test fixtures.
    """
    try:
        for perm_name, description in DEFAULT_PERMISSIONS.items():
            await create_permission(db, perm_name, description)

        roles = {}
        for role_name, role_config in DEFAULT_ROLES.items():
            roles[role_name] = await create_role(
                db,
                name=role_name,
                permissions=role_config["permissions"],
                description=role_config["description"],
            )

        await db.commit()
        logger.log_info(
            {
                "event_type": "rbac_initialization_completed",
                "roles": len(roles),
                "permissions": len(DEFAULT_PERMISSIONS),
            }
        )
        return roles

    except Exception as e:
        await db.rollback()
        logger.log_error(
            {
                "event_type": "rbac_initialization_failed",
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise
