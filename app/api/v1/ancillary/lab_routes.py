import traceback
from typing import Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db
from app.api.v1.ancillary.request_routes import build_request_router
from app.core.exceptions import AppError
from app.core.pagination import (
    PaginatedResponse,
    PaginationParams,
    get_pagination_params,
)
from app.core.permission_checker import require_lab_or_admin, require_result_reader
from app.core.utils import logger
from app.models.user_model import User
from app.schemas.ancillary_schemas import (
    LabResultResponseSchema,
    LabResultStatus,
    LabResultUpsertSchema,
    RequestKind,
)
from app.services.ancillary_service import LabResultService


request_router = build_request_router(RequestKind.LAB)
router = APIRouter(prefix="/lab", tags=["lab results"])


@router.put("/requests/{request_id}/result", response_model=LabResultResponseSchema)
async def upsert_lab_result(
    request_id: uuid.UUID,
    result_data: LabResultUpsertSchema,
    response: Response,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_lab_or_admin()),
):
    """
    Write the draft result of a paid lab request.

    Responds 201 when a result is created and 200 when the current one is
    updated.

    Raises:
        403: Caller is neither the assigned technician nor an administrator
        409: Payment not settled, request delivered, or result already sent
    """
    service = LabResultService(db)
    user_id = str(current_user.id)

    try:
        lab_result, created = await service.upsert_result(
            request_id, result_data, current_user
        )
        if created:
            response.status_code = status.HTTP_201_CREATED
        return LabResultResponseSchema.model_validate(lab_result, from_attributes=True)

    except (HTTPException, AppError):
        raise

    except Exception as e:
        logger.log_error(
            {
                "event": "lab_result_upsert_error",
                "error": str(e),
                "error_type": type(e).__name__,
                "traceback": traceback.format_exc(),
                "request_id": str(request_id),
                "user_id": user_id,
            }
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while saving the lab result",
        )


@router.post("/results/{result_id}/validate", response_model=LabResultResponseSchema)
async def validate_lab_result(
    result_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_lab_or_admin()),
):
    lab_result = await LabResultService(db).validate_result(result_id, current_user)
    return LabResultResponseSchema.model_validate(lab_result, from_attributes=True)


@router.post("/results/{result_id}/send", response_model=LabResultResponseSchema)
async def send_lab_result(
    result_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_lab_or_admin()),
):
    """Deliver a validated result to the ordering doctor."""
    lab_result = await LabResultService(db).send_result(result_id, current_user)
    return LabResultResponseSchema.model_validate(lab_result, from_attributes=True)


@router.get("/results", response_model=PaginatedResponse[LabResultResponseSchema])
async def list_lab_results(
    result_status: Optional[LabResultStatus] = Query(None, alias="status"),
    request_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_result_reader()),
):
    """
    Lab results, newest first.

    Technicians see results of paid requests; doctors see only the sent
    results of their own requests.
    """
    return await LabResultService(db).list_results(
        current_user, pagination, status=result_status, request_id=request_id
    )


@router.get("/results/{result_id}", response_model=LabResultResponseSchema)
async def get_lab_result(
    result_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_result_reader()),
):
    lab_result = await LabResultService(db).get_result(result_id, current_user)
    return LabResultResponseSchema.model_validate(lab_result, from_attributes=True)
