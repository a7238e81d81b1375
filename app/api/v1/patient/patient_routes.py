import traceback
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db
from app.core.exceptions import AppError
from app.core.pagination import (
    PaginatedResponse,
    PaginationParams,
    get_pagination_params,
)
from app.core.permission_checker import require_reception_or_admin
from app.core.security import get_current_user
from app.core.utils import logger
from app.models.user_model import User
from app.schemas.patient_schemas import (
    PatientRegistrationSchema,
    PatientResponseSchema,
    RegistrationResponseSchema,
)
from app.services.patient_service import PatientService


router = APIRouter(prefix="/patients", tags=["patients"])


@router.post(
    "/register",
    response_model=RegistrationResponseSchema,
    status_code=status.HTTP_201_CREATED,
)
async def register_patient(
    registration: PatientRegistrationSchema,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_reception_or_admin()),
):
    """
    Register a patient with their consultation payment.

    A bed and a doctor can be given at intake; the doctor assignment opens
    the patient's dossier. Nothing is saved when any step fails.

    Raises:
        400: Invalid demographics, payment or doctor
        404: No active consultation price, or unknown bed
        409: Bed occupied
        500: Internal server error
    """
    service = PatientService(db)
    user_id = str(current_user.id)

    try:
        result = await service.register_patient(registration, current_user)
        return RegistrationResponseSchema.model_validate(result, from_attributes=True)

    except (HTTPException, AppError):
        raise

    except ValueError as e:
        logger.log_warning(
            {
                "event": "patient_registration_failed",
                "reason": "validation_error",
                "error": str(e),
                "registered_by": user_id,
            }
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    except Exception as e:
        logger.log_error(
            {
                "event": "patient_registration_error",
                "error": str(e),
                "error_type": type(e).__name__,
                "traceback": traceback.format_exc(),
                "registered_by": user_id,
            }
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while registering the patient",
        )


@router.get("", response_model=PaginatedResponse[PatientResponseSchema])
async def list_patients(
    search: Optional[str] = Query(None, description="Name, phone or patient number"),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await PatientService(db).list_patients(current_user, pagination, search)


@router.get("/{patient_id}", response_model=PatientResponseSchema)
async def get_patient(
    patient_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    patient = await PatientService(db).get_patient(patient_id, current_user)
    return PatientResponseSchema.model_validate(patient, from_attributes=True)
