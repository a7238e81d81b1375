import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db
from app.core.pagination import (
    PaginatedResponse,
    PaginationParams,
    get_pagination_params,
)
from app.core.permission_checker import require_doctor_or_admin
from app.core.security import get_current_user
from app.models.user_model import User
from app.schemas.care_schemas import (
    PrescriptionCreateSchema,
    PrescriptionResponseSchema,
)
from app.services.prescription_service import PrescriptionService


router = APIRouter(prefix="/prescriptions", tags=["prescriptions"])


@router.post(
    "",
    response_model=PrescriptionResponseSchema,
    status_code=status.HTTP_201_CREATED,
)
async def create_prescription(
    prescription_data: PrescriptionCreateSchema,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_doctor_or_admin()),
):
    """
    Prescribe medication for a patient.

    Raises:
        400: No items, or the consultation belongs to another patient
        403: Consultation belongs to another doctor
        404: Patient or consultation not found
        409: Dossier archived
    """
    prescription = await PrescriptionService(db).create_prescription(
        prescription_data, current_user
    )
    return PrescriptionResponseSchema.model_validate(prescription, from_attributes=True)


@router.get("", response_model=PaginatedResponse[PrescriptionResponseSchema])
async def list_prescriptions(
    patient_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Doctors see their own prescriptions; pharmacy sees all."""
    return await PrescriptionService(db).list_prescriptions(
        current_user, pagination, patient_id
    )
