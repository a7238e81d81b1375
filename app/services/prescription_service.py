from typing import Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.access_scope import apply_scope
from app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.core.pagination import PaginatedResponse, PaginationParams, Paginator
from app.core.utils import logger
from app.db.transaction import atomic
from app.models.care_model import Prescription, PrescriptionItem
from app.models.user_model import User
from app.repositories.care_repo import (
    ConsultationRepository,
    DossierRepository,
    PrescriptionRepository,
)
from app.repositories.patient_repo import PatientRepository
from app.repositories.user_repo import UserRepository
from app.schemas.care_schemas import (
    PrescriptionCreateSchema,
    PrescriptionResponseSchema,
    PrescriptionStatus,
)
from app.schemas.user_schemas import UserRole
from app.services.dossier_service import ensure_dossier_writable


class PrescriptionService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = PrescriptionRepository(db)
        self.patient_repo = PatientRepository(db)
        self.consultation_repo = ConsultationRepository(db)
        self.dossier_repo = DossierRepository(db)
        self.user_repo = UserRepository(db)

    async def _resolve_doctor_id(
        self, data: PrescriptionCreateSchema, current_user: User
    ) -> uuid.UUID:
        """The prescribing doctor when no consultation names one."""
        if not current_user.is_administrator:
            return current_user.id
        if not data.doctor_id:
            raise ValidationError("doctor_id is required when no consultation is given")

        doctor = await self.user_repo.get_user_by_id(data.doctor_id)
        if not doctor:
            raise NotFoundError("Doctor not found")
        if not doctor.has_role(UserRole.DOCTOR.value):
            raise ValidationError("Prescriptions can only be written for a doctor")
        return doctor.id

    async def create_prescription(
        self, data: PrescriptionCreateSchema, current_user: User
    ) -> Prescription:
        """
        Write a prescription inside the patient's care episode.

        The dossier is the consultation's one, else the latest for this
        patient and doctor; archived dossiers accept no new prescriptions.
        """
        if not data.items:
            raise ValidationError("A prescription needs at least one item")

        async with atomic(self.db):
            patient = await self.patient_repo.get_patient_by_id(data.patient_id)
            if not patient:
                raise NotFoundError("Patient not found")

            doctor_id = current_user.id
            dossier = None
            if data.consultation_id:
                consultation = await self.consultation_repo.get_consultation_by_id(
                    data.consultation_id
                )
                if not consultation:
                    raise NotFoundError("Consultation not found")
                if consultation.patient_id != data.patient_id:
                    raise ValidationError("Consultation belongs to another patient")
                if consultation.doctor_id != current_user.id:
                    if not current_user.is_administrator:
                        raise ForbiddenError("Consultation belongs to another doctor")
                    doctor_id = consultation.doctor_id
                dossier = await self.dossier_repo.get_dossier_by_consultation(
                    consultation.id
                )
            else:
                doctor_id = await self._resolve_doctor_id(data, current_user)
                dossier = await self.dossier_repo.get_latest_dossier(
                    data.patient_id, doctor_id
                )
            ensure_dossier_writable(dossier)

            prescription = await self.repo.create_prescription(
                Prescription(
                    patient_id=data.patient_id,
                    doctor_id=doctor_id,
                    consultation_id=data.consultation_id,
                    dossier_id=dossier.id if dossier else None,
                    status=PrescriptionStatus.DRAFT,
                    notes=data.notes,
                    items=[PrescriptionItem(**item.model_dump()) for item in data.items],
                )
            )

        logger.log_info(
            {
                "event_type": "prescription_created",
                "prescription_id": str(prescription.id),
                "patient_id": str(prescription.patient_id),
                "doctor_id": str(prescription.doctor_id),
                "item_count": len(prescription.items),
            }
        )
        return prescription

    async def list_prescriptions(
        self,
        current_user: User,
        params: PaginationParams,
        patient_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse:
        query = apply_scope(
            self.repo.list_prescriptions_query(patient_id), Prescription, current_user
        )
        return await Paginator.paginate(
            self.db, query, params, PrescriptionResponseSchema
        )
