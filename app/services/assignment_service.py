from typing import Optional, Tuple
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.access_scope import apply_scope
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.pagination import PaginatedResponse, PaginationParams, Paginator
from app.core.utils import logger
from app.db.transaction import atomic
from app.models.care_model import ConsultationDossier, DoctorAssignment
from app.models.user_model import User
from app.repositories.care_repo import AssignmentRepository, DossierRepository
from app.repositories.patient_repo import PatientRepository
from app.repositories.payment_repo import PaymentRepository
from app.repositories.user_repo import UserRepository
from app.schemas.care_schemas import (
    AssignmentCreateSchema,
    AssignmentResponseSchema,
    AssignmentStatus,
    DossierStatus,
)
from app.schemas.payment_schemas import PaymentStatus, PaymentType
from app.schemas.user_schemas import UserRole

ALREADY_ASSIGNED = "already assigned"


class AssignmentService:
    """Binds a patient to a doctor and opens the episode's dossier."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = AssignmentRepository(db)
        self.dossier_repo = DossierRepository(db)
        self.patient_repo = PatientRepository(db)
        self.payment_repo = PaymentRepository(db)
        self.user_repo = UserRepository(db)

    async def get_doctor(self, doctor_id: uuid.UUID) -> User:
        """Resolve an active user holding the doctor role."""
        doctor = await self.user_repo.get_user_by_id(doctor_id)
        if not doctor or not doctor.is_active or not doctor.has_role(UserRole.DOCTOR.value):
            raise ValidationError("Doctor not found or not an active doctor")
        return doctor

    async def assign(
        self,
        patient_id: uuid.UUID,
        doctor_id: uuid.UUID,
        payment_id: uuid.UUID,
        created_by_id: Optional[uuid.UUID],
    ) -> Tuple[DoctorAssignment, ConsultationDossier]:
        """
        Create the assignment and its active dossier (flush only).

        The caller owns the transaction. The open-assignment check runs
        under a row lock and is backed by the partial unique index
        ``uq_doctor_assignments_active_patient``.
        """
        patient = await self.patient_repo.get_patient_by_id(patient_id)
        if not patient:
            raise NotFoundError("Patient not found")

        await self.get_doctor(doctor_id)

        payment = await self.payment_repo.get_payment_by_id(payment_id)
        if not payment:
            raise ValidationError("Payment not found")
        if payment.type != PaymentType.CONSULTATION:
            raise ValidationError("Assignment requires a consultation payment")
        if payment.status != PaymentStatus.PAID:
            raise ValidationError("Consultation payment has not been settled")
        if payment.patient_id != patient_id:
            raise ValidationError("Payment belongs to another patient")

        existing = await self.repo.get_active_assignment_for_patient(
            patient_id, for_update=True
        )
        if existing:
            raise ConflictError(ALREADY_ASSIGNED)

        assignment = await self.repo.create_assignment(
            DoctorAssignment(
                patient_id=patient_id,
                doctor_id=doctor_id,
                payment_id=payment_id,
                status=AssignmentStatus.ASSIGNED,
                created_by_id=created_by_id,
            )
        )
        dossier = await self.dossier_repo.create_dossier(
            ConsultationDossier(
                patient_id=patient_id,
                doctor_id=doctor_id,
                assignment=assignment,
                consultation=None,
                status=DossierStatus.ACTIVE,
            )
        )

        logger.log_info(
            {
                "event_type": "doctor_assigned",
                "assignment_id": str(assignment.id),
                "dossier_id": str(dossier.id),
                "patient_id": str(patient_id),
                "doctor_id": str(doctor_id),
            }
        )
        return assignment, dossier

    async def create_assignment(
        self, data: AssignmentCreateSchema, current_user: User
    ) -> Tuple[DoctorAssignment, ConsultationDossier]:
        async with atomic(self.db, conflict_message=ALREADY_ASSIGNED):
            assignment, dossier = await self.assign(
                data.patient_id, data.doctor_id, data.payment_id, current_user.id
            )
        return assignment, dossier

    async def list_assignments(
        self,
        current_user: User,
        params: PaginationParams,
        status: Optional[AssignmentStatus] = None,
    ) -> PaginatedResponse:
        query = apply_scope(
            self.repo.list_assignments_query(status), DoctorAssignment, current_user
        )
        return await Paginator.paginate(
            self.db, query, params, AssignmentResponseSchema
        )
