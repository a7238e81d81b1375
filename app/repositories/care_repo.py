from typing import Optional
import uuid

from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.care_model import (
    Consultation,
    ConsultationDossier,
    DoctorAssignment,
    Prescription,
)
from app.schemas.care_schemas import (
    ACTIVE_ASSIGNMENT_STATUSES,
    ConsultationStatus,
    DossierStatus,
)


class AssignmentRepository:
    """Repository layer for doctor assignments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_assignment_for_patient(
        self, patient_id: uuid.UUID, for_update: bool = False
    ) -> Optional[DoctorAssignment]:
        query = select(DoctorAssignment).where(
            DoctorAssignment.patient_id == patient_id,
            DoctorAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalars().first()

    async def create_assignment(self, assignment: DoctorAssignment) -> DoctorAssignment:
        self.db.add(assignment)
        await self.db.flush()
        return assignment

    def list_assignments_query(self, status=None) -> Select:
        query = select(DoctorAssignment)
        if status:
            query = query.where(DoctorAssignment.status == status)
        return query.order_by(DoctorAssignment.created_at.desc())


class DossierRepository:
    """Repository layer for consultation dossiers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_dossier_by_id(
        self, dossier_id: uuid.UUID, for_update: bool = False
    ) -> Optional[ConsultationDossier]:
        query = select(ConsultationDossier).where(ConsultationDossier.id == dossier_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalars().first()

    async def get_dossier_by_consultation(
        self, consultation_id: uuid.UUID
    ) -> Optional[ConsultationDossier]:
        result = await self.db.execute(
            select(ConsultationDossier).where(
                ConsultationDossier.consultation_id == consultation_id
            )
        )
        return result.scalars().first()

    async def get_latest_dossier(
        self, patient_id: uuid.UUID, doctor_id: uuid.UUID
    ) -> Optional[ConsultationDossier]:
        """Most recent dossier of any status for this patient/doctor pair."""
        result = await self.db.execute(
            select(ConsultationDossier)
            .where(
                ConsultationDossier.patient_id == patient_id,
                ConsultationDossier.doctor_id == doctor_id,
            )
            .order_by(ConsultationDossier.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def create_dossier(self, dossier: ConsultationDossier) -> ConsultationDossier:
        self.db.add(dossier)
        await self.db.flush()
        return dossier

    def list_dossiers_query(self, status: Optional[DossierStatus] = None) -> Select:
        query = select(ConsultationDossier)
        if status:
            query = query.where(ConsultationDossier.status == status)
        return query.order_by(ConsultationDossier.created_at.desc())


class ConsultationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_consultation_by_id(
        self, consultation_id: uuid.UUID, for_update: bool = False
    ) -> Optional[Consultation]:
        query = select(Consultation).where(Consultation.id == consultation_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalars().first()

    async def create_consultation(self, consultation: Consultation) -> Consultation:
        self.db.add(consultation)
        await self.db.flush()
        return consultation

    def list_consultations_query(
        self,
        patient_id: Optional[uuid.UUID] = None,
        status: Optional[ConsultationStatus] = None,
    ) -> Select:
        query = select(Consultation)
        if patient_id:
            query = query.where(Consultation.patient_id == patient_id)
        if status:
            query = query.where(Consultation.status == status)
        return query.order_by(Consultation.created_at.desc())


class PrescriptionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_prescription(self, prescription: Prescription) -> Prescription:
        self.db.add(prescription)
        await self.db.flush()
        return prescription

    def list_prescriptions_query(
        self, patient_id: Optional[uuid.UUID] = None
    ) -> Select:
        query = select(Prescription)
        if patient_id:
            query = query.where(Prescription.patient_id == patient_id)
        return query.order_by(Prescription.created_at.desc())
