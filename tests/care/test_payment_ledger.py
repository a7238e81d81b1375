"""
Payment Ledger Tests

Direct payments, settlement and cancellation.
"""

from decimal import Decimal
import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.payment_model import Payment
from app.models.user_model import User
from app.schemas.ancillary_schemas import AncillaryRequestCreateSchema, RequestKind
from app.schemas.payment_schemas import (
    PaymentCreateSchema,
    PaymentMethod,
    PaymentSettleSchema,
    PaymentStatus,
    PaymentType,
)
from app.services.ancillary_service import AncillaryRequestService
from app.services.payment_service import PaymentService
from conftest import create_payment, refetch


@pytest.mark.asyncio
@pytest.mark.unit
class TestCreatePayment:
    async def test_direct_payment_is_paid(
        self, db_session: AsyncSession, patient, reception: User
    ):
        payment = await PaymentService(db_session).create_payment(
            PaymentCreateSchema(
                patient_id=patient.id,
                amount=Decimal("50.00"),
                type=PaymentType.CONSULTATION,
            ),
            reception,
        )

        assert payment.status == PaymentStatus.PAID
        assert payment.method == PaymentMethod.CASH
        assert payment.created_by_id == reception.id

    @pytest.mark.parametrize("amount", ["0", "-5"])
    async def test_rejects_non_positive_amount(
        self, db_session: AsyncSession, patient, reception: User, amount
    ):
        with pytest.raises(ValidationError):
            await PaymentService(db_session).create_payment(
                PaymentCreateSchema(
                    patient_id=patient.id,
                    amount=Decimal(amount),
                    type=PaymentType.CONSULTATION,
                ),
                reception,
            )

    async def test_mobile_money_requires_reference(
        self, db_session: AsyncSession, patient, reception: User
    ):
        with pytest.raises(ValidationError, match="reference"):
            await PaymentService(db_session).create_payment(
                PaymentCreateSchema(
                    patient_id=patient.id,
                    amount=Decimal("20"),
                    method=PaymentMethod.MOBILE_MONEY,
                    type=PaymentType.CONSULTATION,
                ),
                reception,
            )

    async def test_unknown_patient(self, db_session: AsyncSession, reception: User):
        with pytest.raises(NotFoundError):
            await PaymentService(db_session).create_payment(
                PaymentCreateSchema(
                    patient_id=uuid.uuid4(),
                    amount=Decimal("20"),
                    type=PaymentType.CONSULTATION,
                ),
                reception,
            )

    async def test_related_id_only_for_ancillary_types(
        self, db_session: AsyncSession, patient, reception: User
    ):
        with pytest.raises(ValidationError, match="related_id"):
            await PaymentService(db_session).create_payment(
                PaymentCreateSchema(
                    patient_id=patient.id,
                    amount=Decimal("20"),
                    type=PaymentType.CONSULTATION,
                    related_id=uuid.uuid4(),
                ),
                reception,
            )

    async def test_direct_payment_for_gated_request_conflicts(
        self, db_session: AsyncSession, patient, doctor: User, reception: User, lab_exam
    ):
        request = await AncillaryRequestService(db_session, RequestKind.LAB).create_request(
            AncillaryRequestCreateSchema(patient_id=patient.id, exam_ids=[lab_exam.id]),
            doctor,
        )

        with pytest.raises(ConflictError):
            await PaymentService(db_session).create_payment(
                PaymentCreateSchema(
                    patient_id=patient.id,
                    amount=Decimal("30"),
                    type=PaymentType.LAB,
                    related_id=request.id,
                ),
                reception,
            )


@pytest.mark.asyncio
@pytest.mark.unit
class TestSettleAndCancel:
    async def test_settle_pending_payment(self, db_session: AsyncSession, patient):
        payment = await create_payment(
            db_session, patient, PaymentType.LAB, status=PaymentStatus.PENDING
        )

        settled = await PaymentService(db_session).settle_payment(
            payment.id,
            PaymentSettleSchema(method=PaymentMethod.MOBILE_MONEY, reference=" MM-1 "),
        )

        assert settled.status == PaymentStatus.PAID
        assert settled.method == PaymentMethod.MOBILE_MONEY
        assert settled.reference == "MM-1"

    async def test_settle_is_idempotent_on_paid(self, db_session: AsyncSession, patient):
        payment = await create_payment(db_session, patient)
        service = PaymentService(db_session)

        await service.settle_payment(payment.id, PaymentSettleSchema(method=PaymentMethod.CASH))
        again = await service.settle_payment(
            payment.id, PaymentSettleSchema(method=PaymentMethod.MOBILE_MONEY, reference="R2")
        )

        assert again.status == PaymentStatus.PAID
        assert again.reference == "R2"

    async def test_settle_cancelled_payment_conflicts(
        self, db_session: AsyncSession, patient
    ):
        payment = await create_payment(
            db_session, patient, PaymentType.LAB, status=PaymentStatus.CANCELLED
        )
        payment_id = payment.id

        with pytest.raises(ConflictError):
            await PaymentService(db_session).settle_payment(
                payment_id, PaymentSettleSchema(method=PaymentMethod.CASH)
            )

        assert (await refetch(db_session, Payment, payment_id)).status == PaymentStatus.CANCELLED

    async def test_settle_unknown_payment(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await PaymentService(db_session).settle_payment(
                uuid.uuid4(), PaymentSettleSchema(method=PaymentMethod.CASH)
            )

    async def test_cancel_is_terminal(
        self, db_session: AsyncSession, patient, reception: User
    ):
        payment = await create_payment(db_session, patient)
        service = PaymentService(db_session)

        cancelled = await service.cancel_payment(payment.id, reception)
        assert cancelled.status == PaymentStatus.CANCELLED

        with pytest.raises(ConflictError):
            await service.cancel_payment(payment.id, reception)
