import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db
from app.core.pagination import (
    PaginatedResponse,
    PaginationParams,
    get_pagination_params,
)
from app.core.permission_checker import require_doctor_or_admin
from app.models.user_model import User
from app.schemas.ancillary_schemas import DoctorResultSchema, RequestKind
from app.services.ancillary_service import DoctorResultService


router = APIRouter(prefix="/results", tags=["doctor results"])


@router.get("", response_model=PaginatedResponse[DoctorResultSchema])
async def list_doctor_results(
    pagination: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_doctor_or_admin()),
):
    """Delivered lab and imaging results, newest first."""
    return await DoctorResultService(db).list_results(current_user, pagination)


@router.get("/{kind}/{request_id}", response_model=DoctorResultSchema)
async def get_doctor_result(
    kind: RequestKind,
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_doctor_or_admin()),
):
    return await DoctorResultService(db).get_result(kind, request_id, current_user)
