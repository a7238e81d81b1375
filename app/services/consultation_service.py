from typing import Optional, Tuple
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ForbiddenError, NotFoundError, ConflictError, ValidationError
from app.core.access_scope import apply_scope
from app.core.pagination import PaginatedResponse, PaginationParams, Paginator
from app.core.utils import logger
from app.db.base import utcnow
from app.db.transaction import atomic
from app.models.care_model import Consultation
from app.models.user_model import User
from app.repositories.care_repo import ConsultationRepository, DossierRepository
from app.services.dossier_service import ensure_dossier_writable, mark_dossier_completed
from app.schemas.care_schemas import (
    CONSULTATION_CONTENT_FIELDS,
    AssignmentStatus,
    ConsultationResponseSchema,
    ConsultationStatus,
    ConsultationUpsertSchema,
    DossierStatus,
)


class ConsultationService:
    """One consultation per dossier, written with upsert semantics."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = ConsultationRepository(db)
        self.dossier_repo = DossierRepository(db)

    async def upsert_consultation(
        self, data: ConsultationUpsertSchema, current_user: User
    ) -> Tuple[Consultation, bool]:
        """
        Create the dossier's consultation, or merge into the existing one.

        Only fields present in the payload are written, so repeating a call
        with the same payload leaves a single, unchanged row.

        Returns:
            (consultation, created)
        """
        fields = data.model_dump(
            exclude_unset=True, include=set(CONSULTATION_CONTENT_FIELDS)
        )

        async with atomic(self.db):
            dossier = await self.dossier_repo.get_dossier_by_id(
                data.dossier_id, for_update=True
            )
            if not dossier:
                raise NotFoundError("Dossier not found")
            if dossier.doctor_id != current_user.id:
                raise ForbiddenError("Only the owning doctor can write this consultation")
            ensure_dossier_writable(dossier)
            if dossier.patient_id != data.patient_id:
                raise ValidationError("Patient does not match the dossier")

            if dossier.consultation_id is None:
                consultation = await self.repo.create_consultation(
                    Consultation(
                        patient_id=dossier.patient_id,
                        doctor_id=dossier.doctor_id,
                        status=ConsultationStatus.IN_PROGRESS,
                        **fields,
                    )
                )
                dossier.consultation = consultation
                if dossier.assignment.status == AssignmentStatus.ASSIGNED:
                    dossier.assignment.status = AssignmentStatus.IN_CONSULTATION
                created = True
            else:
                consultation = await self.repo.get_consultation_by_id(
                    dossier.consultation_id, for_update=True
                )
                for field, value in fields.items():
                    setattr(consultation, field, value)
                created = False

        logger.log_info(
            {
                "event_type": "consultation_created" if created else "consultation_updated",
                "consultation_id": str(consultation.id),
                "dossier_id": str(dossier.id),
                "fields": sorted(fields.keys()),
            }
        )
        return consultation, created

    async def complete_consultation(
        self, consultation_id: uuid.UUID, current_user: User
    ) -> Consultation:
        """Complete the consultation and cascade to its active dossier."""
        async with atomic(self.db):
            consultation = await self.repo.get_consultation_by_id(
                consultation_id, for_update=True
            )
            if not consultation:
                raise NotFoundError("Consultation not found")
            if (
                consultation.doctor_id != current_user.id
                and not current_user.is_administrator
            ):
                raise ForbiddenError(
                    "Only the consulting doctor or an administrator can complete this consultation"
                )
            if consultation.status == ConsultationStatus.COMPLETED:
                raise ConflictError("Consultation is already completed")

            consultation.status = ConsultationStatus.COMPLETED
            consultation.completed_at = utcnow()

            dossier = await self.dossier_repo.get_dossier_by_consultation(consultation.id)
            cascaded = dossier is not None and dossier.status == DossierStatus.ACTIVE
            if cascaded:
                mark_dossier_completed(dossier)

        logger.log_info(
            {
                "event_type": "consultation_completed",
                "consultation_id": str(consultation.id),
                "completed_by": str(current_user.id),
                "dossier_completed": cascaded,
            }
        )
        return consultation

    async def get_consultation(
        self, consultation_id: uuid.UUID, current_user: User
    ) -> Consultation:
        consultation = await self.repo.get_consultation_by_id(consultation_id)
        if not consultation:
            raise NotFoundError("Consultation not found")
        if (
            consultation.doctor_id != current_user.id
            and not current_user.is_administrator
        ):
            raise ForbiddenError("Consultation belongs to another doctor")
        return consultation

    async def list_consultations(
        self,
        current_user: User,
        params: PaginationParams,
        patient_id: Optional[uuid.UUID] = None,
        status: Optional[ConsultationStatus] = None,
    ) -> PaginatedResponse:
        query = apply_scope(
            self.repo.list_consultations_query(patient_id, status),
            Consultation,
            current_user,
        )
        return await Paginator.paginate(
            self.db, query, params, ConsultationResponseSchema
        )
