"""
Prescription Tests
"""

import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.core.pagination import PaginationParams
from app.models.user_model import User
from app.schemas.care_schemas import (
    PrescriptionCreateSchema,
    PrescriptionItemSchema,
    PrescriptionStatus,
)
from app.services.consultation_service import ConsultationService
from app.services.dossier_service import DOSSIER_ARCHIVED, DossierService
from app.services.prescription_service import PrescriptionService
from conftest import create_patient, open_episode, reload, start_consultation

AMOXICILLIN = PrescriptionItemSchema(
    medication="Amoxicillin",
    dosage="500mg",
    frequency="3x daily",
    duration="7 days",
    quantity=21,
)


def prescription(
    patient_id, consultation_id=None, items=None, doctor_id=None
) -> PrescriptionCreateSchema:
    return PrescriptionCreateSchema(
        patient_id=patient_id,
        consultation_id=consultation_id,
        doctor_id=doctor_id,
        items=[AMOXICILLIN] if items is None else items,
    )


@pytest.mark.asyncio
@pytest.mark.unit
class TestCreatePrescription:
    async def test_filed_under_consultation_dossier(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        consultation = await start_consultation(db_session, dossier, doctor)

        created = await PrescriptionService(db_session).create_prescription(
            prescription(patient.id, consultation.id), doctor
        )

        assert created.status == PrescriptionStatus.DRAFT
        assert created.doctor_id == doctor.id
        assert created.dossier_id == dossier.id
        assert [item.medication for item in created.items] == ["Amoxicillin"]

    async def test_defaults_to_latest_dossier(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)

        created = await PrescriptionService(db_session).create_prescription(
            prescription(patient.id), doctor
        )

        assert created.dossier_id == dossier.id
        assert created.consultation_id is None

    async def test_requires_items(self, db_session: AsyncSession, patient, doctor: User):
        with pytest.raises(ValidationError):
            await PrescriptionService(db_session).create_prescription(
                prescription(patient.id, items=[]), doctor
            )

    async def test_unknown_patient(self, db_session: AsyncSession, doctor: User):
        with pytest.raises(NotFoundError):
            await PrescriptionService(db_session).create_prescription(
                prescription(uuid.uuid4()), doctor
            )

    async def test_consultation_of_other_patient(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        consultation = await start_consultation(db_session, dossier, doctor)
        stranger = await create_patient(db_session, "Kwame")

        with pytest.raises(ValidationError):
            await PrescriptionService(db_session).create_prescription(
                prescription(stranger.id, consultation.id), doctor
            )

    async def test_other_doctors_consultation(
        self, db_session: AsyncSession, patient, doctor: User, other_doctor: User,
        reception: User,
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        consultation = await start_consultation(db_session, dossier, doctor)

        with pytest.raises(ForbiddenError):
            await PrescriptionService(db_session).create_prescription(
                prescription(patient.id, consultation.id), other_doctor
            )

    async def test_admin_writes_for_consulting_doctor(
        self, db_session: AsyncSession, patient, doctor: User, admin: User,
        reception: User,
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        consultation = await start_consultation(db_session, dossier, doctor)

        created = await PrescriptionService(db_session).create_prescription(
            prescription(patient.id, consultation.id), admin
        )

        assert created.doctor_id == doctor.id

    async def test_admin_without_consultation_must_name_doctor(
        self, db_session: AsyncSession, patient, doctor: User, admin: User,
        reception: User,
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        patient_id, doctor_id, dossier_id = patient.id, doctor.id, dossier.id
        service = PrescriptionService(db_session)

        with pytest.raises(ValidationError, match="doctor_id"):
            await service.create_prescription(prescription(patient_id), admin)
        await reload(db_session, admin)

        created = await service.create_prescription(
            prescription(patient_id, doctor_id=doctor_id), admin
        )

        assert created.doctor_id == doctor_id
        assert created.dossier_id == dossier_id

    async def test_admin_cannot_attribute_to_non_doctor(
        self, db_session: AsyncSession, patient, admin: User, pharmacist: User
    ):
        with pytest.raises(ValidationError):
            await PrescriptionService(db_session).create_prescription(
                prescription(patient.id, doctor_id=pharmacist.id), admin
            )

    async def test_archived_dossier_rejects_prescription(
        self, db_session: AsyncSession, patient, doctor: User, reception: User
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        consultation = await start_consultation(db_session, dossier, doctor)
        await ConsultationService(db_session).complete_consultation(consultation.id, doctor)
        await DossierService(db_session).archive_dossier(dossier.id, doctor, "Transferred")

        with pytest.raises(ConflictError, match=DOSSIER_ARCHIVED):
            await PrescriptionService(db_session).create_prescription(
                prescription(patient.id, consultation.id), doctor
            )


@pytest.mark.asyncio
@pytest.mark.unit
class TestListPrescriptions:
    async def test_doctor_sees_own_only(
        self, db_session: AsyncSession, patient, doctor: User, other_doctor: User
    ):
        service = PrescriptionService(db_session)
        await service.create_prescription(prescription(patient.id), doctor)
        await service.create_prescription(prescription(patient.id), other_doctor)

        own = await service.list_prescriptions(doctor, PaginationParams())

        assert own.page_info.total_items == 1
        assert own.items[0].doctor_id == doctor.id
