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
from app.schemas.payment_schemas import (
    PaymentCreateSchema,
    PaymentResponseSchema,
    PaymentSettleSchema,
    PaymentStatus,
    PaymentType,
)
from app.services.payment_service import PaymentService


router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "",
    response_model=PaymentResponseSchema,
    status_code=status.HTTP_201_CREATED,
)
async def create_payment(
    payment_data: PaymentCreateSchema,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_reception_or_admin()),
):
    """
    Record a payment taken at the desk.

    Args:
        payment_data: Patient, amount, method and payment type
        db: Database session
        current_user: Authenticated reception or admin user

    Returns:
        PaymentResponseSchema: The paid payment

    Raises:
        400: Non-positive amount, or mobile money without a reference
        404: Patient not found
        409: The related lab/imaging request already owns a payment
        500: Internal server error
    """
    service = PaymentService(db)
    user_id = str(current_user.id)

    try:
        payment = await service.create_payment(payment_data, current_user)
        return PaymentResponseSchema.model_validate(payment, from_attributes=True)

    except (HTTPException, AppError):
        raise

    except ValueError as e:
        logger.log_warning(
            {
                "event": "payment_creation_failed",
                "reason": "validation_error",
                "error": str(e),
                "patient_id": str(payment_data.patient_id),
                "received_by": user_id,
            }
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    except Exception as e:
        logger.log_error(
            {
                "event": "payment_creation_error",
                "error": str(e),
                "error_type": type(e).__name__,
                "traceback": traceback.format_exc(),
                "patient_id": str(payment_data.patient_id),
                "received_by": user_id,
            }
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while recording payment",
        )


@router.post("/{payment_id}/settle", response_model=PaymentResponseSchema)
async def settle_payment(
    payment_id: uuid.UUID,
    settle_data: PaymentSettleSchema,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_reception_or_admin()),
):
    """
    Mark a pending payment as paid. Settling a paid payment again only
    updates its method and reference.

    Raises:
        404: Payment not found
        409: Payment cancelled
    """
    service = PaymentService(db)

    try:
        payment = await service.settle_payment(payment_id, settle_data)

        logger.log_info(
            {
                "event": "payment_settled",
                "payment_id": str(payment.id),
                "method": payment.method.value,
                "settled_by": str(current_user.id),
            }
        )
        return PaymentResponseSchema.model_validate(payment, from_attributes=True)

    except (HTTPException, AppError):
        raise

    except Exception as e:
        logger.log_error(
            {
                "event": "payment_settlement_error",
                "error": str(e),
                "error_type": type(e).__name__,
                "traceback": traceback.format_exc(),
                "payment_id": str(payment_id),
            }
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while settling payment",
        )


@router.post("/{payment_id}/cancel", response_model=PaymentResponseSchema)
async def cancel_payment(
    payment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_reception_or_admin()),
):
    payment = await PaymentService(db).cancel_payment(payment_id, current_user)
    return PaymentResponseSchema.model_validate(payment, from_attributes=True)


@router.get("", response_model=PaginatedResponse[PaymentResponseSchema])
async def list_payments(
    patient_id: Optional[uuid.UUID] = Query(None),
    payment_type: Optional[PaymentType] = Query(None, alias="type"),
    payment_status: Optional[PaymentStatus] = Query(None, alias="status"),
    pagination: PaginationParams = Depends(get_pagination_params),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """List payments visible to the caller, newest first."""
    return await PaymentService(db).list_payments(
        current_user, pagination, patient_id, payment_type, payment_status
    )


@router.get("/{payment_id}", response_model=PaymentResponseSchema)
async def get_payment(
    payment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_reception_or_admin()),
):
    payment = await PaymentService(db).get_payment(payment_id)
    return PaymentResponseSchema.model_validate(payment, from_attributes=True)
