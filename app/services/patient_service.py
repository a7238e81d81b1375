from datetime import datetime, timezone
from typing import Any, Dict, Optional
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.config.config import settings
from app.core.access_scope import apply_scope
from app.core.exceptions import ConflictError, NotFoundError
from app.core.pagination import PaginatedResponse, PaginationParams, Paginator
from app.core.utils import logger
from app.db.transaction import atomic
from app.models.patient_model import Patient
from app.models.user_model import User
from app.repositories.patient_repo import PatientRepository
from app.schemas.patient_schemas import PatientRegistrationSchema, PatientResponseSchema
from app.schemas.payment_schemas import PaymentStatus, PaymentType
from app.services.assignment_service import AssignmentService
from app.services.payment_service import PaymentService
from app.services.pricing_service import PricingService

PATIENT_FIELDS = (
    "first_name",
    "last_name",
    "date_of_birth",
    "gender",
    "phone",
    "email",
    "address",
    "emergency_contact",
)


def format_patient_number(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{year}-{sequence:05d}"


def next_patient_number(last_number: Optional[str], prefix: str, year: int) -> str:
    """Next ``PREFIX-YYYY-NNNNN`` number; the sequence restarts every year."""
    sequence = 1
    if last_number:
        try:
            sequence = int(last_number.rsplit("-", 1)[-1]) + 1
        except ValueError:
            logger.log_warning(
                {"event_type": "patient_number_unparsable", "last_number": last_number}
            )
    return format_patient_number(prefix, year, sequence)


class PatientService:
    """Patient intake and lookup."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = PatientRepository(self.db)
        self.payment_service = PaymentService(db)
        self.assignment_service = AssignmentService(db)
        self.pricing_service = PricingService(db)

    async def _generate_patient_number(self) -> str:
        year = datetime.now(timezone.utc).year
        prefix = f"{settings.PATIENT_NUMBER_PREFIX}-{year}-"
        last_number = await self.repo.get_last_patient_number(prefix)
        return next_patient_number(last_number, settings.PATIENT_NUMBER_PREFIX, year)

    async def register_patient(
        self, data: PatientRegistrationSchema, current_user: User
    ) -> Dict[str, Any]:
        """
        Register a walk-in patient in one transaction.

        Creates the patient and their paid consultation payment, then
        optionally occupies a bed and assigns a doctor. Any failure rolls
        the whole intake back.
        """
        async with atomic(
            self.db, conflict_message="Registration collided with another; retry"
        ):
            amount = data.consultation_amount
            if amount is None:
                amount = (await self.pricing_service.get_active_price()).price

            patient = await self.repo.create_patient(
                Patient(
                    patient_number=await self._generate_patient_number(),
                    bed=None,
                    **data.model_dump(include=set(PATIENT_FIELDS)),
                )
            )

            payment = await self.payment_service.record_payment(
                patient_id=patient.id,
                amount=amount,
                method=data.payment_method,
                payment_type=PaymentType.CONSULTATION,
                created_by_id=current_user.id,
                status=PaymentStatus.PAID,
                reference=data.payment_reference,
            )

            bed = None
            if data.bed_id:
                bed = await self.repo.get_bed_for_update(data.bed_id)
                if not bed:
                    raise NotFoundError("Bed not found")
                if bed.is_occupied:
                    raise ConflictError(f"Bed {bed.number} is already occupied")
                bed.occupy(patient.id)
                patient.bed = bed

            assignment, dossier = None, None
            if data.doctor_id:
                assignment, dossier = await self.assignment_service.assign(
                    patient.id, data.doctor_id, payment.id, current_user.id
                )

        logger.log_info(
            {
                "event_type": "patient_registered",
                "patient_id": str(patient.id),
                "patient_number": patient.patient_number,
                "payment_id": str(payment.id),
                "bed_id": str(bed.id) if bed else None,
                "assignment_id": str(assignment.id) if assignment else None,
                "registered_by": str(current_user.id),
            }
        )
        return {
            "patient": patient,
            "payment": payment,
            "bed": bed,
            "assignment": assignment,
            "dossier": dossier,
        }

    async def get_patient(self, patient_id: uuid.UUID, current_user: User) -> Patient:
        query = apply_scope(
            self.repo.list_patients_query().where(Patient.id == patient_id),
            Patient,
            current_user,
        )
        patient = (await self.db.execute(query)).scalars().first()
        if not patient:
            raise NotFoundError("Patient not found")
        return patient

    async def list_patients(
        self,
        current_user: User,
        params: PaginationParams,
        search: Optional[str] = None,
    ) -> PaginatedResponse:
        query = apply_scope(self.repo.list_patients_query(search), Patient, current_user)
        return await Paginator.paginate(self.db, query, params, PatientResponseSchema)
