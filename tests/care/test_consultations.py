"""
Consultation Authoring Tests
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, ForbiddenError, ValidationError
from app.core.pagination import PaginationParams
from app.models.care_model import Consultation
from app.models.user_model import User
from app.schemas.care_schemas import (
    AssignmentStatus,
    ConsultationStatus,
    ConsultationUpsertSchema,
    DossierStatus,
)
from app.services.consultation_service import ConsultationService
from app.services.dossier_service import DOSSIER_ARCHIVED, DossierService
from conftest import create_patient, open_episode, start_consultation


@pytest.fixture
async def dossier(db_session: AsyncSession, patient, doctor: User, reception: User):
    return await open_episode(db_session, patient, doctor, reception)


@pytest.mark.asyncio
@pytest.mark.unit
class TestUpsertConsultation:
    async def test_first_upsert_creates_and_links(
        self, db_session: AsyncSession, dossier, doctor: User
    ):
        consultation, created = await ConsultationService(db_session).upsert_consultation(
            ConsultationUpsertSchema(
                dossier_id=dossier.id,
                patient_id=dossier.patient_id,
                symptoms="Headache",
                vitals={"temperature": 38.2},
            ),
            doctor,
        )

        assert created is True
        assert consultation.status == ConsultationStatus.IN_PROGRESS
        assert dossier.consultation_id == consultation.id
        assert dossier.assignment.status == AssignmentStatus.IN_CONSULTATION

    async def test_repeated_upsert_is_idempotent(
        self, db_session: AsyncSession, dossier, doctor: User
    ):
        service = ConsultationService(db_session)
        payload = ConsultationUpsertSchema(
            dossier_id=dossier.id, patient_id=dossier.patient_id, diagnosis="Malaria"
        )

        first, _ = await service.upsert_consultation(payload, doctor)
        second, created = await service.upsert_consultation(payload, doctor)

        assert created is False
        assert second.id == first.id
        assert second.diagnosis == "Malaria"
        count = await db_session.scalar(select(func.count()).select_from(Consultation))
        assert count == 1

    async def test_update_merges_only_sent_fields(
        self, db_session: AsyncSession, dossier, doctor: User
    ):
        service = ConsultationService(db_session)
        await service.upsert_consultation(
            ConsultationUpsertSchema(
                dossier_id=dossier.id, patient_id=dossier.patient_id, symptoms="Cough"
            ),
            doctor,
        )

        updated, _ = await service.upsert_consultation(
            ConsultationUpsertSchema(
                dossier_id=dossier.id, patient_id=dossier.patient_id, notes="Review in 3 days"
            ),
            doctor,
        )

        assert updated.symptoms == "Cough"
        assert updated.notes == "Review in 3 days"

    async def test_only_owner_writes(
        self, db_session: AsyncSession, dossier, other_doctor: User
    ):
        with pytest.raises(ForbiddenError):
            await ConsultationService(db_session).upsert_consultation(
                ConsultationUpsertSchema(
                    dossier_id=dossier.id, patient_id=dossier.patient_id
                ),
                other_doctor,
            )

    async def test_patient_must_match_dossier(
        self, db_session: AsyncSession, dossier, doctor: User
    ):
        stranger = await create_patient(db_session, "Yaw")

        with pytest.raises(ValidationError):
            await ConsultationService(db_session).upsert_consultation(
                ConsultationUpsertSchema(dossier_id=dossier.id, patient_id=stranger.id),
                doctor,
            )

    async def test_archived_dossier_rejects_writes(
        self, db_session: AsyncSession, dossier, doctor: User
    ):
        service = ConsultationService(db_session)
        consultation, _ = await service.upsert_consultation(
            ConsultationUpsertSchema(dossier_id=dossier.id, patient_id=dossier.patient_id),
            doctor,
        )
        await service.complete_consultation(consultation.id, doctor)
        await DossierService(db_session).archive_dossier(dossier.id, doctor, "Closed")

        with pytest.raises(ConflictError, match=DOSSIER_ARCHIVED):
            await service.upsert_consultation(
                ConsultationUpsertSchema(
                    dossier_id=dossier.id, patient_id=dossier.patient_id, notes="late"
                ),
                doctor,
            )


@pytest.mark.asyncio
@pytest.mark.unit
class TestCompleteConsultation:
    async def test_completion_cascades_to_dossier_and_assignment(
        self, db_session: AsyncSession, dossier, doctor: User
    ):
        service = ConsultationService(db_session)
        consultation, _ = await service.upsert_consultation(
            ConsultationUpsertSchema(dossier_id=dossier.id, patient_id=dossier.patient_id),
            doctor,
        )

        completed = await service.complete_consultation(consultation.id, doctor)

        assert completed.status == ConsultationStatus.COMPLETED
        assert completed.completed_at is not None
        assert dossier.status == DossierStatus.COMPLETED
        assert dossier.assignment.status == AssignmentStatus.COMPLETED

    async def test_admin_may_complete(
        self, db_session: AsyncSession, dossier, doctor: User, admin: User
    ):
        service = ConsultationService(db_session)
        consultation, _ = await service.upsert_consultation(
            ConsultationUpsertSchema(dossier_id=dossier.id, patient_id=dossier.patient_id),
            doctor,
        )

        completed = await service.complete_consultation(consultation.id, admin)

        assert completed.status == ConsultationStatus.COMPLETED

    async def test_other_doctor_cannot_complete(
        self, db_session: AsyncSession, dossier, doctor: User, other_doctor: User
    ):
        service = ConsultationService(db_session)
        consultation, _ = await service.upsert_consultation(
            ConsultationUpsertSchema(dossier_id=dossier.id, patient_id=dossier.patient_id),
            doctor,
        )

        with pytest.raises(ForbiddenError):
            await service.complete_consultation(consultation.id, other_doctor)

    async def test_complete_twice_conflicts(
        self, db_session: AsyncSession, dossier, doctor: User
    ):
        service = ConsultationService(db_session)
        consultation, _ = await service.upsert_consultation(
            ConsultationUpsertSchema(dossier_id=dossier.id, patient_id=dossier.patient_id),
            doctor,
        )
        await service.complete_consultation(consultation.id, doctor)

        with pytest.raises(ConflictError):
            await service.complete_consultation(consultation.id, doctor)


@pytest.mark.asyncio
@pytest.mark.rbac
class TestListConsultations:
    async def test_scoped_to_owning_doctor(
        self, db_session: AsyncSession, patient, doctor: User, other_doctor: User,
        reception: User, admin: User, technician: User,
    ):
        own = await start_consultation(
            db_session, await open_episode(db_session, patient, doctor, reception), doctor
        )
        kwame = await create_patient(db_session, "Kwame")
        await start_consultation(
            db_session,
            await open_episode(db_session, kwame, other_doctor, reception),
            other_doctor,
        )
        service = ConsultationService(db_session)

        mine = await service.list_consultations(doctor, PaginationParams())
        everyone = await service.list_consultations(admin, PaginationParams())
        for_kwame = await service.list_consultations(
            admin, PaginationParams(), patient_id=kwame.id
        )
        hidden = await service.list_consultations(technician, PaginationParams())

        assert [item.id for item in mine.items] == [own.id]
        assert everyone.page_info.total_items == 2
        assert [item.patient_id for item in for_kwame.items] == [kwame.id]
        assert hidden.items == []

    async def test_status_filter(
        self, db_session: AsyncSession, dossier, doctor: User
    ):
        service = ConsultationService(db_session)
        consultation = await start_consultation(db_session, dossier, doctor)
        await service.complete_consultation(consultation.id, doctor)

        completed = await service.list_consultations(
            doctor, PaginationParams(), status=ConsultationStatus.COMPLETED
        )
        waiting = await service.list_consultations(
            doctor, PaginationParams(), status=ConsultationStatus.WAITING
        )

        assert [item.id for item in completed.items] == [consultation.id]
        assert waiting.page_info.total_items == 0
