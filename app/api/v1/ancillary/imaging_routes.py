import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_db
from app.api.v1.ancillary.request_routes import build_request_router
from app.core.permission_checker import require_lab_or_admin
from app.models.user_model import User
from app.schemas.ancillary_schemas import (
    ImagingCompleteSchema,
    ImagingRequestResponseSchema,
    RequestKind,
)
from app.services.ancillary_service import AncillaryRequestService


request_router = build_request_router(RequestKind.IMAGING)
router = APIRouter(prefix="/imaging", tags=["imaging results"])


@router.post(
    "/requests/{request_id}/complete", response_model=ImagingRequestResponseSchema
)
async def complete_imaging_request(
    request_id: uuid.UUID,
    complete_data: ImagingCompleteSchema,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_lab_or_admin()),
):
    """
    Record the imaging report and deliver it to the doctor.

    Raises:
        400: Empty report
        403: Caller is neither the assigned technician nor an administrator
        409: Payment not settled, or request already delivered
    """
    request = await AncillaryRequestService(db, RequestKind.IMAGING).complete_imaging(
        request_id, complete_data.results, current_user
    )
    return ImagingRequestResponseSchema.model_validate(request, from_attributes=True)
