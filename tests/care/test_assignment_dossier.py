"""
Assignment and Dossier Lifecycle Tests
"""

import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.db.transaction import atomic
from app.models.care_model import ConsultationDossier, DoctorAssignment
from app.models.user_model import User
from app.schemas.care_schemas import (
    AssignmentCreateSchema,
    AssignmentStatus,
    DossierStatus,
)
from app.schemas.payment_schemas import PaymentStatus, PaymentType
from app.schemas.user_schemas import UserRole
from app.services.assignment_service import ALREADY_ASSIGNED, AssignmentService
from app.services.dossier_service import DossierService
from conftest import create_patient, create_payment, create_user, open_episode, refetch


@pytest.mark.asyncio
@pytest.mark.unit
class TestCreateAssignment:
    async def test_creates_assignment_and_active_dossier(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        payment = await create_payment(db_session, patient)

        assignment, dossier = await AssignmentService(db_session).create_assignment(
            AssignmentCreateSchema(
                patient_id=patient.id, doctor_id=doctor.id, payment_id=payment.id
            ),
            reception,
        )

        assert assignment.status == AssignmentStatus.ASSIGNED
        assert dossier.status == DossierStatus.ACTIVE
        assert dossier.assignment_id == assignment.id
        assert dossier.doctor_id == doctor.id
        assert dossier.consultation_id is None

    async def test_second_active_assignment_conflicts(
        self, db_session: AsyncSession, patient, doctor: User, other_doctor: User,
        reception: User,
    ):
        await open_episode(db_session, patient, doctor, reception)
        payment = await create_payment(db_session, patient)

        with pytest.raises(ConflictError, match=ALREADY_ASSIGNED):
            await AssignmentService(db_session).create_assignment(
                AssignmentCreateSchema(
                    patient_id=patient.id, doctor_id=other_doctor.id, payment_id=payment.id
                ),
                reception,
            )

    async def test_index_rejects_second_active_assignment(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        """The partial unique index holds even when the service check is bypassed."""
        await open_episode(db_session, patient, doctor, reception)
        payment = await create_payment(db_session, patient)
        patient_id = patient.id

        with pytest.raises(ConflictError, match=ALREADY_ASSIGNED):
            async with atomic(db_session, conflict_message=ALREADY_ASSIGNED):
                db_session.add(
                    DoctorAssignment(
                        patient_id=patient_id,
                        doctor_id=doctor.id,
                        payment_id=payment.id,
                        status=AssignmentStatus.IN_CONSULTATION,
                    )
                )

        count = await db_session.scalar(
            select(func.count())
            .select_from(DoctorAssignment)
            .where(DoctorAssignment.patient_id == patient_id)
        )
        assert count == 1

    async def test_completed_assignment_allows_new_one(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        await DossierService(db_session).complete_dossier(dossier.id, doctor)

        second = await open_episode(db_session, patient, doctor, reception)

        assert second.id != dossier.id
        assert second.status == DossierStatus.ACTIVE

    @pytest.mark.parametrize(
        "payment_type,status",
        [
            (PaymentType.LAB, PaymentStatus.PAID),
            (PaymentType.CONSULTATION, PaymentStatus.PENDING),
        ],
    )
    async def test_requires_paid_consultation_payment(
        self, db_session: AsyncSession, patient, doctor: User, reception: User,
        payment_type, status,
    ):
        payment = await create_payment(db_session, patient, payment_type, status)

        with pytest.raises(ValidationError):
            await AssignmentService(db_session).create_assignment(
                AssignmentCreateSchema(
                    patient_id=patient.id, doctor_id=doctor.id, payment_id=payment.id
                ),
                reception,
            )

    async def test_payment_of_another_patient(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        stranger = await create_patient(db_session, "Kofi")
        payment = await create_payment(db_session, stranger)

        with pytest.raises(ValidationError, match="another patient"):
            await AssignmentService(db_session).create_assignment(
                AssignmentCreateSchema(
                    patient_id=patient.id, doctor_id=doctor.id, payment_id=payment.id
                ),
                reception,
            )

    async def test_doctor_must_be_active_doctor(
        self, db_session: AsyncSession, patient, reception: User, technician: User
    ):
        inactive = await create_user(db_session, UserRole.DOCTOR, is_active=False)
        payment = await create_payment(db_session, patient)
        service = AssignmentService(db_session)

        for candidate_id in (inactive.id, technician.id):
            with pytest.raises(ValidationError):
                await service.assign(patient.id, candidate_id, payment.id, None)

    async def test_unknown_patient(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        payment = await create_payment(db_session, patient)

        with pytest.raises(NotFoundError):
            await AssignmentService(db_session).create_assignment(
                AssignmentCreateSchema(
                    patient_id=uuid.uuid4(), doctor_id=doctor.id, payment_id=payment.id
                ),
                reception,
            )


@pytest.mark.asyncio
@pytest.mark.unit
class TestDossierLifecycle:
    async def test_complete_then_archive(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        service = DossierService(db_session)

        completed = await service.complete_dossier(dossier.id, doctor)
        assert completed.status == DossierStatus.COMPLETED
        assert completed.completed_at is not None
        assert completed.assignment.status == AssignmentStatus.COMPLETED

        archived = await service.archive_dossier(dossier.id, doctor, "  Episode closed  ")
        assert archived.status == DossierStatus.ARCHIVED
        assert archived.archived_by_id == doctor.id
        assert archived.archive_reason == "Episode closed"
        assert archived.archived_at is not None

    async def test_archive_requires_completed(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        dossier_id = dossier.id

        with pytest.raises(ConflictError):
            await DossierService(db_session).archive_dossier(dossier_id, doctor, "reason")

        fresh = await refetch(db_session, ConsultationDossier, dossier_id)
        assert fresh.status == DossierStatus.ACTIVE

    async def test_archive_requires_reason(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        service = DossierService(db_session)
        await service.complete_dossier(dossier.id, doctor)

        with pytest.raises(ValidationError):
            await service.archive_dossier(dossier.id, doctor, "   ")

    async def test_only_owner_completes(
        self, db_session: AsyncSession, patient, doctor: User, other_doctor: User,
        reception: User,
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)

        with pytest.raises(ForbiddenError):
            await DossierService(db_session).complete_dossier(dossier.id, other_doctor)

    async def test_admin_cannot_archive(
        self, db_session: AsyncSession, patient, doctor: User, reception: User, admin: User
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        service = DossierService(db_session)
        await service.complete_dossier(dossier.id, doctor)

        with pytest.raises(ForbiddenError):
            await service.archive_dossier(dossier.id, admin, "cleanup")

    async def test_complete_twice_conflicts(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        service = DossierService(db_session)
        await service.complete_dossier(dossier.id, doctor)

        with pytest.raises(ConflictError):
            await service.complete_dossier(dossier.id, doctor)
