import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db
from app.core.pagination import (
    PaginatedResponse,
    PaginationParams,
    get_pagination_params,
)
from app.core.permission_checker import require_doctor_or_admin
from app.core.utils import logger
from app.models.user_model import User
from app.schemas.care_schemas import (
    DossierArchiveSchema,
    DossierResponseSchema,
    DossierStatus,
)
from app.services.dossier_service import DossierService


router = APIRouter(prefix="/dossiers", tags=["dossiers"])


@router.get("", response_model=PaginatedResponse[DossierResponseSchema])
async def list_dossiers(
    dossier_status: Optional[DossierStatus] = Query(None, alias="status"),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_doctor_or_admin()),
):
    return await DossierService(db).list_dossiers(
        current_user, pagination, dossier_status
    )


@router.get("/{dossier_id}", response_model=DossierResponseSchema)
async def get_dossier(
    dossier_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_doctor_or_admin()),
):
    dossier = await DossierService(db).get_dossier(dossier_id, current_user)
    return DossierResponseSchema.model_validate(dossier, from_attributes=True)


@router.post("/{dossier_id}/complete", response_model=DossierResponseSchema)
async def complete_dossier(
    dossier_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_doctor_or_admin()),
):
    """
    Close an active dossier and its assignment.

    Raises:
        403: Caller does not own the dossier
        409: Dossier is not active
    """
    dossier = await DossierService(db).complete_dossier(dossier_id, current_user)
    return DossierResponseSchema.model_validate(dossier, from_attributes=True)


@router.post("/{dossier_id}/archive", response_model=DossierResponseSchema)
async def archive_dossier(
    dossier_id: uuid.UUID,
    archive_data: DossierArchiveSchema,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_doctor_or_admin()),
):
    """
    Archive a completed dossier. Archived dossiers accept no new requests,
    prescriptions or consultation edits.

    Raises:
        400: Blank reason
        403: Caller is not the owning doctor
        409: Dossier is not completed
    """
    dossier = await DossierService(db).archive_dossier(
        dossier_id, current_user, archive_data.reason
    )
    logger.log_info(
        {
            "event": "dossier_archived",
            "dossier_id": str(dossier.id),
            "user_id": str(current_user.id),
        }
    )
    return DossierResponseSchema.model_validate(dossier, from_attributes=True)
