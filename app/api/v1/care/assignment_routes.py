import traceback
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
from app.schemas.care_schemas import (
    AssignmentCreatedResponseSchema,
    AssignmentCreateSchema,
    AssignmentResponseSchema,
    AssignmentStatus,
    DossierResponseSchema,
)
from app.services.assignment_service import AssignmentService


router = APIRouter(prefix="/assignments", tags=["assignments"])


@router.post(
    "",
    response_model=AssignmentCreatedResponseSchema,
    status_code=status.HTTP_201_CREATED,
)
async def create_assignment(
    assignment_data: AssignmentCreateSchema,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_reception_or_admin()),
):
    """
    Assign a patient to a doctor and open their dossier.

    Raises:
        400: Doctor inactive or not a doctor; payment missing, unpaid,
            not a consultation payment or for another patient
        404: Patient not found
        409: Patient already has an open assignment
        500: Internal server error
    """
    service = AssignmentService(db)

    try:
        assignment, dossier = await service.create_assignment(
            assignment_data, current_user
        )
        return AssignmentCreatedResponseSchema(
            assignment=AssignmentResponseSchema.model_validate(
                assignment, from_attributes=True
            ),
            dossier=DossierResponseSchema.model_validate(dossier, from_attributes=True),
        )

    except (HTTPException, AppError):
        raise

    except Exception as e:
        logger.log_error(
            {
                "event": "assignment_creation_error",
                "error": str(e),
                "error_type": type(e).__name__,
                "traceback": traceback.format_exc(),
                "patient_id": str(assignment_data.patient_id),
                "doctor_id": str(assignment_data.doctor_id),
            }
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while assigning the doctor",
        )


@router.get("", response_model=PaginatedResponse[AssignmentResponseSchema])
async def list_assignments(
    assignment_status: Optional[AssignmentStatus] = Query(None, alias="status"),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Doctors only see their own assignments."""
    return await AssignmentService(db).list_assignments(
        current_user, pagination, assignment_status
    )
