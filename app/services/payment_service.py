from decimal import Decimal
from typing import List, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.access_scope import apply_scope
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.pagination import PaginatedResponse, PaginationParams, Paginator
from app.core.utils import logger
from app.db.transaction import atomic
from app.models.payment_model import Payment, PaymentItem
from app.models.user_model import User
from app.repositories.ancillary_repo import AncillaryRequestRepository
from app.repositories.patient_repo import PatientRepository
from app.repositories.payment_repo import PaymentRepository
from app.schemas.ancillary_schemas import RequestKind
from app.schemas.payment_schemas import (
    PaymentCreateSchema,
    PaymentMethod,
    PaymentResponseSchema,
    PaymentSettleSchema,
    PaymentStatus,
    PaymentType,
)

_ANCILLARY_PAYMENT_KINDS = {
    PaymentType.LAB: RequestKind.LAB,
    PaymentType.IMAGING: RequestKind.IMAGING,
}


def validate_payment_method(method: PaymentMethod, reference: Optional[str]) -> None:
    if method == PaymentMethod.MOBILE_MONEY and not (reference and reference.strip()):
        raise ValidationError("A reference is required for mobile money payments")


def validate_amount(amount: Optional[Decimal], allow_zero: bool = False) -> None:
    if amount is None or amount < 0:
        raise ValidationError("Payment amount cannot be negative")
    if amount == 0 and not allow_zero:
        raise ValidationError("Payment amount must be greater than zero")


class PaymentService:
    """
    Payment ledger.

    Status only moves forward: pending -> paid, and pending/paid ->
    cancelled. ``record_payment`` and ``settle`` only flush so other
    services can compose them inside their own transaction; the remaining
    public methods are complete transactions.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = PaymentRepository(db)
        self.patient_repo = PatientRepository(db)

    # ============= Procedures =============
    async def record_payment(
        self,
        patient_id: uuid.UUID,
        amount: Decimal,
        method: PaymentMethod,
        payment_type: PaymentType,
        created_by_id: Optional[uuid.UUID],
        status: PaymentStatus = PaymentStatus.PAID,
        reference: Optional[str] = None,
        related_id: Optional[uuid.UUID] = None,
        allow_zero: bool = False,
        items: Optional[List[PaymentItem]] = None,
    ) -> Payment:
        validate_amount(amount, allow_zero=allow_zero)
        validate_payment_method(method, reference)

        patient = await self.patient_repo.get_patient_by_id(patient_id)
        if not patient:
            raise NotFoundError("Patient not found")

        payment = Payment(
            patient_id=patient_id,
            amount=amount,
            method=method,
            status=status,
            type=payment_type,
            reference=reference.strip() if reference else None,
            related_id=related_id,
            created_by_id=created_by_id,
            items=items or [],
        )
        return await self.repo.create_payment(payment)

    async def settle(
        self,
        payment_id: uuid.UUID,
        method: PaymentMethod,
        reference: Optional[str] = None,
    ) -> Payment:
        """
        Move a payment to ``paid`` under a row lock.

        Re-settling a paid payment only refreshes method and reference.
        """
        validate_payment_method(method, reference)

        payment = await self.repo.get_payment_for_update(payment_id)
        if not payment:
            raise NotFoundError("Payment not found")
        if payment.status == PaymentStatus.CANCELLED:
            raise ConflictError("Cannot settle a cancelled payment")

        previous_status = payment.status
        payment.status = PaymentStatus.PAID
        payment.method = method
        if reference:
            payment.reference = reference.strip()
        await self.db.flush()

        logger.log_info(
            {
                "event_type": "payment_settled",
                "payment_id": str(payment.id),
                "payment_type": payment.type.value,
                "previous_status": previous_status.value,
                "related_id": str(payment.related_id) if payment.related_id else None,
            }
        )
        return payment

    # ============= Operations =============
    async def create_payment(
        self, data: PaymentCreateSchema, current_user: User
    ) -> Payment:
        """Record a payment taken at the desk; it is paid on creation."""
        if data.related_id is not None:
            kind = _ANCILLARY_PAYMENT_KINDS.get(data.type)
            if kind is None:
                raise ValidationError(
                    "related_id is only allowed for lab and imaging payments"
                )
            await self._ensure_request_not_gated(kind, data.related_id)

        async with atomic(self.db):
            payment = await self.record_payment(
                patient_id=data.patient_id,
                amount=data.amount,
                method=data.method,
                payment_type=data.type,
                created_by_id=current_user.id,
                status=PaymentStatus.PAID,
                reference=data.reference,
                related_id=data.related_id,
            )

        logger.log_info(
            {
                "event_type": "payment_recorded",
                "payment_id": str(payment.id),
                "patient_id": str(payment.patient_id),
                "payment_type": payment.type.value,
                "amount": float(payment.amount),
                "created_by": str(current_user.id),
            }
        )
        return payment

    async def _ensure_request_not_gated(
        self, kind: RequestKind, request_id: uuid.UUID
    ) -> None:
        request = await AncillaryRequestRepository(self.db, kind).get_request_by_id(
            request_id
        )
        if request is not None:
            raise ConflictError(
                f"{kind.value.capitalize()} request already has its own payment; settle it instead"
            )

    async def settle_payment(
        self, payment_id: uuid.UUID, data: PaymentSettleSchema
    ) -> Payment:
        async with atomic(self.db):
            payment = await self.settle(payment_id, data.method, data.reference)
        return payment

    async def cancel_payment(self, payment_id: uuid.UUID, current_user: User) -> Payment:
        async with atomic(self.db):
            payment = await self.repo.get_payment_for_update(payment_id)
            if not payment:
                raise NotFoundError("Payment not found")
            if payment.status == PaymentStatus.CANCELLED:
                raise ConflictError("Payment is already cancelled")

            previous_status = payment.status
            payment.status = PaymentStatus.CANCELLED

        logger.log_info(
            {
                "event_type": "payment_cancelled",
                "payment_id": str(payment.id),
                "previous_status": previous_status.value,
                "cancelled_by": str(current_user.id),
            }
        )
        return payment

    async def get_payment(self, payment_id: uuid.UUID) -> Payment:
        payment = await self.repo.get_payment_by_id(payment_id)
        if not payment:
            raise NotFoundError("Payment not found")
        return payment

    async def list_payments(
        self,
        current_user: User,
        params: PaginationParams,
        patient_id: Optional[uuid.UUID] = None,
        payment_type: Optional[PaymentType] = None,
        status: Optional[PaymentStatus] = None,
    ) -> PaginatedResponse:
        query = self.repo.list_payments_query(patient_id, payment_type, status)
        query = apply_scope(query, Payment, current_user)
        return await Paginator.paginate(self.db, query, params, PaymentResponseSchema)
