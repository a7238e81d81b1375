import traceback
from typing import Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db
from app.core.exceptions import AppError
from app.core.pagination import (
    PaginatedResponse,
    PaginationParams,
    get_pagination_params,
)
from app.core.permission_checker import require_doctor_or_admin
from app.core.utils import logger
from app.models.user_model import User
from app.schemas.care_schemas import (
    ConsultationResponseSchema,
    ConsultationStatus,
    ConsultationUpsertSchema,
)
from app.services.consultation_service import ConsultationService


router = APIRouter(prefix="/consultations", tags=["consultations"])


@router.put("", response_model=ConsultationResponseSchema)
async def upsert_consultation(
    consultation_data: ConsultationUpsertSchema,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_doctor_or_admin()),
):
    """
    Create or update the consultation of a dossier.

    Responds 201 when the consultation is created and 200 when an existing
    one is updated. Only the fields sent are changed.

    Raises:
        400: Patient does not match the dossier
        403: Caller does not own the dossier
        404: Dossier not found
        409: Dossier archived
        500: Internal server error
    """
    service = ConsultationService(db)
    user_id = str(current_user.id)

    try:
        consultation, created = await service.upsert_consultation(
            consultation_data, current_user
        )
        if created:
            response.status_code = status.HTTP_201_CREATED
        return ConsultationResponseSchema.model_validate(
            consultation, from_attributes=True
        )

    except (HTTPException, AppError):
        raise

    except Exception as e:
        logger.log_error(
            {
                "event": "consultation_upsert_error",
                "error": str(e),
                "error_type": type(e).__name__,
                "traceback": traceback.format_exc(),
                "dossier_id": str(consultation_data.dossier_id),
                "user_id": user_id,
            }
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while saving the consultation",
        )


@router.get("", response_model=PaginatedResponse[ConsultationResponseSchema])
async def list_consultations(
    patient_id: Optional[uuid.UUID] = Query(None),
    consultation_status: Optional[ConsultationStatus] = Query(None, alias="status"),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_doctor_or_admin()),
):
    """Consultations newest first; doctors see only their own."""
    return await ConsultationService(db).list_consultations(
        current_user, pagination, patient_id, consultation_status
    )


@router.post("/{consultation_id}/complete", response_model=ConsultationResponseSchema)
async def complete_consultation(
    consultation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_doctor_or_admin()),
):
    """Complete the consultation; its active dossier completes with it."""
    consultation = await ConsultationService(db).complete_consultation(
        consultation_id, current_user
    )
    return ConsultationResponseSchema.model_validate(consultation, from_attributes=True)


@router.get("/{consultation_id}", response_model=ConsultationResponseSchema)
async def get_consultation(
    consultation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_doctor_or_admin()),
):
    consultation = await ConsultationService(db).get_consultation(
        consultation_id, current_user
    )
    return ConsultationResponseSchema.model_validate(consultation, from_attributes=True)
