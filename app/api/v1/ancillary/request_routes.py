"""
Endpoints shared by lab and imaging requests.

``build_request_router`` mounts the same workflow under ``/lab/requests``
and ``/imaging/requests``; each kind adds its own fulfilment endpoints.
"""

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
from app.core.permission_checker import (
    require_doctor_or_admin,
    require_lab_or_admin,
    require_reception_or_admin,
)
from app.core.security import get_current_user
from app.core.utils import logger
from app.models.user_model import User
from app.schemas.ancillary_schemas import (
    AncillaryRequestCreateSchema,
    EffectiveStatus,
    RequestKind,
    TechnicianAssignSchema,
)
from app.schemas.payment_schemas import RequestSettleSchema
from app.services.ancillary_service import RESPONSE_SCHEMAS, AncillaryRequestService


def build_request_router(kind: RequestKind) -> APIRouter:
    router = APIRouter(prefix=f"/{kind.value}/requests", tags=[f"{kind.value} requests"])
    response_schema = RESPONSE_SCHEMAS[kind]

    def to_response(request):
        return response_schema.model_validate(request, from_attributes=True)

    @router.post("", response_model=response_schema, status_code=status.HTTP_201_CREATED)
    async def create_request(
        request_data: AncillaryRequestCreateSchema,
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(require_doctor_or_admin()),
    ):
        """
        Order exams for a patient.

        The request is created with a pending payment for the sum of the
        exams' current prices; it reaches the technician queue once that
        payment is settled.

        Raises:
            400: No exams, duplicate or inactive exams
            404: Patient or consultation not found
            409: Dossier archived
            500: Internal server error
        """
        service = AncillaryRequestService(db, kind)
        user_id = str(current_user.id)

        try:
            request = await service.create_request(request_data, current_user)
            return to_response(request)

        except (HTTPException, AppError):
            raise

        except Exception as e:
            logger.log_error(
                {
                    "event": f"{kind.value}_request_creation_error",
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "traceback": traceback.format_exc(),
                    "patient_id": str(request_data.patient_id),
                    "user_id": user_id,
                }
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=f"An unexpected error occurred while creating the {kind.value} request",
            )

    @router.get("", response_model=PaginatedResponse[response_schema])
    async def list_requests(
        effective_status: Optional[EffectiveStatus] = Query(None),
        patient_id: Optional[uuid.UUID] = Query(None),
        pagination: PaginationParams = Depends(get_pagination_params),
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
    ):
        return await AncillaryRequestService(db, kind).list_requests(
            current_user, pagination, effective_status, patient_id
        )

    @router.get("/queue", response_model=PaginatedResponse[response_schema])
    async def technician_queue(
        mine: bool = Query(False, description="Only requests assigned to me"),
        include_delivered: bool = Query(False),
        pagination: PaginationParams = Depends(get_pagination_params),
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(require_lab_or_admin()),
    ):
        """Paid requests waiting for, or handled by, the technicians."""
        return await AncillaryRequestService(db, kind).technician_queue(
            current_user, pagination, mine_only=mine, include_delivered=include_delivered
        )

    @router.get("/{request_id}", response_model=response_schema)
    async def get_request(
        request_id: uuid.UUID,
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
    ):
        request = await AncillaryRequestService(db, kind).get_request(
            request_id, current_user
        )
        return to_response(request)

    @router.post("/{request_id}/assign", response_model=response_schema)
    async def assign_technician(
        request_id: uuid.UUID,
        assign_data: TechnicianAssignSchema,
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(require_reception_or_admin()),
    ):
        """
        Staff a paid request.

        Raises:
            400: Not an active lab technician
            409: Payment not settled, or request already delivered
        """
        request = await AncillaryRequestService(db, kind).assign_technician(
            request_id, assign_data.technician_id
        )
        logger.log_info(
            {
                "event": f"{kind.value}_technician_assigned",
                "request_id": str(request.id),
                "technician_id": str(assign_data.technician_id),
                "assigned_by": str(current_user.id),
            }
        )
        return to_response(request)

    @router.post("/{request_id}/settle", response_model=response_schema)
    async def settle_request_payment(
        request_id: uuid.UUID,
        settle_data: RequestSettleSchema,
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(require_reception_or_admin()),
    ):
        """Settle the request's payment, staffing it in the same step if asked."""
        request = await AncillaryRequestService(db, kind).settle_request_payment(
            request_id,
            settle_data.method,
            settle_data.reference,
            technician_id=settle_data.technician_id,
        )
        return to_response(request)

    return router
