"""
Lab and imaging request workflow.

    pending --(results recorded and delivered)--> sent_to_doctor

Every fulfilment step re-reads the gating payment under a row lock: an
unpaid request can be neither staffed nor worked on.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
import uuid

from sqlalchemy import func, select, union_all
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.access_scope import apply_scope
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from app.core.pagination import PaginatedResponse, PaginationParams, Paginator
from app.core.utils import logger
from app.db.base import utcnow
from app.db.transaction import atomic
from app.models.ancillary_model import (
    AncillaryRequestMixin,
    ImagingRequest,
    LabRequest,
    LabResult,
)
from app.models.care_model import ConsultationDossier
from app.models.payment_model import Payment
from app.models.user_model import User
from app.repositories.ancillary_repo import (
    AncillaryRequestRepository,
    LabResultRepository,
)
from app.repositories.care_repo import ConsultationRepository, DossierRepository
from app.repositories.patient_repo import PatientRepository
from app.repositories.payment_repo import PaymentRepository
from app.repositories.user_repo import UserRepository
from app.schemas.ancillary_schemas import (
    AncillaryRequestCreateSchema,
    AncillaryRequestResponseSchema,
    DoctorResultSchema,
    EffectiveStatus,
    ImagingRequestResponseSchema,
    LabResultResponseSchema,
    LabResultStatus,
    LabResultUpsertSchema,
    RequestExamLineSchema,
    RequestKind,
    RequestStatus,
)
from app.schemas.payment_schemas import PaymentMethod, PaymentStatus
from app.schemas.user_schemas import UserRole
from app.services.dossier_service import ensure_dossier_writable
from app.services.payment_service import PaymentService

RESPONSE_SCHEMAS = {
    RequestKind.LAB: AncillaryRequestResponseSchema,
    RequestKind.IMAGING: ImagingRequestResponseSchema,
}


class AncillaryRequestService:
    """Workflow shared by lab and imaging requests, parameterised by kind."""

    def __init__(self, db: AsyncSession, kind: RequestKind):
        self.db = db
        self.kind = kind
        self.repo = AncillaryRequestRepository(db, kind)
        self.config = self.repo.config
        self.payment_repo = PaymentRepository(db)
        self.patient_repo = PatientRepository(db)
        self.user_repo = UserRepository(db)
        self.consultation_repo = ConsultationRepository(db)
        self.dossier_repo = DossierRepository(db)
        self.payment_service = PaymentService(db)

    @property
    def response_schema(self):
        return RESPONSE_SCHEMAS[self.kind]

    # ============= Creation =============
    async def _resolve_doctor(
        self, data: AncillaryRequestCreateSchema, current_user: User
    ) -> User:
        doctor_id = current_user.id
        if current_user.is_administrator and data.doctor_id:
            doctor_id = data.doctor_id

        doctor = await self.user_repo.get_user_by_id(doctor_id)
        if not doctor:
            raise NotFoundError("Doctor not found")
        if not doctor.has_role(UserRole.DOCTOR.value):
            raise ValidationError("Requests can only be ordered by a doctor")
        return doctor

    async def _resolve_dossier(
        self,
        patient_id: uuid.UUID,
        doctor_id: uuid.UUID,
        consultation_id: Optional[uuid.UUID],
    ) -> Optional[ConsultationDossier]:
        """The dossier a request is filed under: by consultation, else latest."""
        if consultation_id:
            consultation = await self.consultation_repo.get_consultation_by_id(
                consultation_id
            )
            if not consultation:
                raise NotFoundError("Consultation not found")
            if consultation.patient_id != patient_id:
                raise ValidationError("Consultation belongs to another patient")
            return await self.dossier_repo.get_dossier_by_consultation(consultation_id)
        return await self.dossier_repo.get_latest_dossier(patient_id, doctor_id)

    async def _resolve_exams(self, exam_ids: List[uuid.UUID]) -> List:
        if not exam_ids:
            raise ValidationError("At least one exam must be selected")
        if len(set(exam_ids)) != len(exam_ids):
            raise ValidationError("Each exam can only be requested once")

        exams = await self.repo.get_exams(exam_ids)
        usable = {exam.id: exam for exam in exams if exam.is_active}
        invalid = [str(exam_id) for exam_id in exam_ids if exam_id not in usable]
        if invalid:
            raise ValidationError(
                "Some exams are unknown or inactive", extra={"invalid_exam_ids": invalid}
            )
        return [usable[exam_id] for exam_id in exam_ids]

    async def create_request(
        self, data: AncillaryRequestCreateSchema, current_user: User
    ) -> AncillaryRequestMixin:
        """
        Create the request and its pending gating payment as one unit.

        Exam prices are copied onto the request lines and the total, so
        catalog price changes never alter an existing request.
        """
        async with atomic(self.db):
            doctor = await self._resolve_doctor(data, current_user)
            exams = await self._resolve_exams(data.exam_ids)

            patient = await self.patient_repo.get_patient_by_id(data.patient_id)
            if not patient:
                raise NotFoundError("Patient not found")

            dossier = await self._resolve_dossier(
                data.patient_id, doctor.id, data.consultation_id
            )
            ensure_dossier_writable(dossier)

            total_amount = sum((Decimal(exam.price) for exam in exams), Decimal("0"))
            request_id = uuid.uuid4()

            payment = await self.payment_service.record_payment(
                patient_id=data.patient_id,
                amount=total_amount,
                method=PaymentMethod.CASH,
                payment_type=self.config.payment_type,
                created_by_id=doctor.id,
                status=PaymentStatus.PENDING,
                reference=f"{self.config.reference_prefix}-{int(utcnow().timestamp() * 1000)}",
                related_id=request_id,
                allow_zero=True,
            )
            lines = [
                self.config.line_model(exam_id=exam.id, price=exam.price, exam=exam)
                for exam in exams
            ]
            extra = {"results": []} if self.kind == RequestKind.LAB else {}
            request = await self.repo.create_request(
                self.config.request_model(
                    id=request_id,
                    patient_id=data.patient_id,
                    doctor_id=doctor.id,
                    consultation_id=data.consultation_id,
                    dossier_id=dossier.id if dossier else None,
                    status=RequestStatus.PENDING,
                    total_amount=total_amount,
                    payment=payment,
                    exams=lines,
                    notes=data.notes,
                    **extra,
                )
            )

        logger.log_info(
            {
                "event_type": f"{self.kind.value}_request_created",
                "request_id": str(request.id),
                "payment_id": str(payment.id),
                "patient_id": str(request.patient_id),
                "doctor_id": str(doctor.id),
                "exam_count": len(lines),
                "total_amount": float(total_amount),
            }
        )
        return request

    # ============= Gating =============
    async def _get_request_for_update(self, request_id: uuid.UUID) -> AncillaryRequestMixin:
        request = await self.repo.get_request_by_id(request_id, for_update=True)
        if not request:
            raise NotFoundError(f"{self.kind.value.capitalize()} request not found")
        return request

    async def _ensure_paid(self, request: AncillaryRequestMixin) -> Payment:
        payment = await self.payment_repo.get_payment_for_update(request.payment_id)
        if payment is None or not payment.is_paid:
            raise ConflictError("The request's payment has not been settled")
        return payment

    async def _ensure_workable(
        self, request: AncillaryRequestMixin, current_user: User
    ) -> None:
        """Payment paid, not yet delivered, and the actor may fulfil it."""
        await self._ensure_paid(request)
        if request.is_delivered:
            raise ConflictError("Results have already been sent to the doctor")
        if (
            not current_user.is_administrator
            and request.technician_id != current_user.id
        ):
            raise ForbiddenError("Only the assigned technician can work on this request")

    # ============= Staffing =============
    async def assign(
        self, request: AncillaryRequestMixin, technician_id: uuid.UUID
    ) -> AncillaryRequestMixin:
        await self._ensure_paid(request)
        if request.is_delivered:
            raise ConflictError("A delivered request cannot be reassigned")

        technician = await self.user_repo.get_user_by_id(technician_id)
        if (
            not technician
            or not technician.is_active
            or not technician.has_role(UserRole.LAB_TECHNICIAN.value)
        ):
            raise ValidationError("Technician not found or not an active technician")

        request.technician_id = technician.id
        await self.db.flush()

        logger.log_info(
            {
                "event_type": f"{self.kind.value}_request_assigned",
                "request_id": str(request.id),
                "technician_id": str(technician.id),
            }
        )
        return request

    async def assign_technician(
        self, request_id: uuid.UUID, technician_id: uuid.UUID
    ) -> AncillaryRequestMixin:
        async with atomic(self.db):
            request = await self._get_request_for_update(request_id)
            await self.assign(request, technician_id)
        return request

    async def settle_request_payment(
        self,
        request_id: uuid.UUID,
        method: PaymentMethod,
        reference: Optional[str] = None,
        technician_id: Optional[uuid.UUID] = None,
    ) -> AncillaryRequestMixin:
        """Settle the gating payment and optionally staff the request, atomically."""
        async with atomic(self.db):
            request = await self._get_request_for_update(request_id)
            request.payment = await self.payment_service.settle(
                request.payment_id, method, reference
            )
            if technician_id:
                await self.assign(request, technician_id)
        return request

    # ============= Imaging fulfilment =============
    async def complete_imaging(
        self, request_id: uuid.UUID, results: str, current_user: User
    ) -> ImagingRequest:
        """Write the report text and deliver it in one step."""
        if self.kind != RequestKind.IMAGING:
            raise ValidationError("Only imaging requests are completed with a report")

        async with atomic(self.db):
            request = await self._get_request_for_update(request_id)
            await self._ensure_workable(request, current_user)
            if not results or not results.strip():
                raise ValidationError("Imaging results cannot be empty")

            request.results = results.strip()
            request.completed_at = utcnow()
            request.status = RequestStatus.SENT_TO_DOCTOR

        logger.log_info(
            {
                "event_type": "imaging_request_completed",
                "request_id": str(request.id),
                "completed_by": str(current_user.id),
            }
        )
        return request

    # ============= Reads =============
    async def get_request(
        self, request_id: uuid.UUID, current_user: User
    ) -> AncillaryRequestMixin:
        model = self.config.request_model
        query = apply_scope(
            select(model).where(model.id == request_id), model, current_user
        )
        request = (await self.db.execute(query)).scalars().first()
        if not request:
            raise NotFoundError(f"{self.kind.value.capitalize()} request not found")
        return request

    async def list_requests(
        self,
        current_user: User,
        params: PaginationParams,
        effective_status: Optional[EffectiveStatus] = None,
        patient_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse:
        query = apply_scope(
            self.repo.list_requests_query(effective_status, patient_id),
            self.config.request_model,
            current_user,
        )
        return await Paginator.paginate(self.db, query, params, self.response_schema)

    async def technician_queue(
        self,
        current_user: User,
        params: PaginationParams,
        mine_only: bool = False,
        include_delivered: bool = False,
    ) -> PaginatedResponse:
        technician_id = current_user.id if mine_only else None
        query = self.repo.technician_queue_query(technician_id, include_delivered)
        return await Paginator.paginate(self.db, query, params, self.response_schema)


class LabResultService:
    """
    Lab result lifecycle: draft -> validated -> sent.

    The most recently created result of a request is the current one.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = LabResultRepository(db)
        self.requests = AncillaryRequestService(db, RequestKind.LAB)

    async def upsert_result(
        self, request_id: uuid.UUID, data: LabResultUpsertSchema, current_user: User
    ) -> Tuple[LabResult, bool]:
        """
        Create or update the current draft.

        Editing a validated result reopens it as a draft and clears the
        validation stamp.

        Returns:
            (result, created)
        """
        async with atomic(self.db):
            request = await self.requests._get_request_for_update(request_id)
            await self.requests._ensure_workable(request, current_user)

            current = await self.repo.get_current_result(request.id)
            if current and current.status == LabResultStatus.SENT:
                raise ConflictError("The current result has already been sent")

            if current:
                current.results = data.results
                if data.technician_notes is not None:
                    current.technician_notes = data.technician_notes
                if current.status == LabResultStatus.VALIDATED:
                    current.status = LabResultStatus.DRAFT
                    current.validated_by_id = None
                    current.validated_at = None
                lab_result, created = current, False
            else:
                lab_result = await self.repo.create_result(
                    LabResult(
                        request=request,
                        status=LabResultStatus.DRAFT,
                        results=data.results,
                        technician_notes=data.technician_notes,
                    )
                )
                created = True

        logger.log_info(
            {
                "event_type": "lab_result_created" if created else "lab_result_updated",
                "result_id": str(lab_result.id),
                "request_id": str(request_id),
                "author_id": str(current_user.id),
            }
        )
        return lab_result, created

    async def _get_result_for_update(self, result_id: uuid.UUID) -> LabResult:
        lab_result = await self.repo.get_result_by_id(result_id, for_update=True)
        if not lab_result:
            raise NotFoundError("Lab result not found")
        return lab_result

    async def validate_result(self, result_id: uuid.UUID, current_user: User) -> LabResult:
        if not current_user.has_any_role(
            UserRole.LAB_TECHNICIAN.value, UserRole.ADMINISTRATOR.value
        ):
            raise ForbiddenError("Only technicians or administrators can validate results")

        async with atomic(self.db):
            lab_result = await self._get_result_for_update(result_id)
            if lab_result.status != LabResultStatus.DRAFT:
                raise ConflictError(
                    f"Result is {lab_result.status.value}; only a draft can be validated"
                )

            request = await self.requests._get_request_for_update(lab_result.request_id)
            await self.requests._ensure_paid(request)

            lab_result.status = LabResultStatus.VALIDATED
            lab_result.validated_by_id = current_user.id
            lab_result.validated_at = utcnow()

        logger.log_info(
            {
                "event_type": "lab_result_validated",
                "result_id": str(lab_result.id),
                "validated_by": str(current_user.id),
            }
        )
        return lab_result

    async def send_result(self, result_id: uuid.UUID, current_user: User) -> LabResult:
        """validated -> sent, delivering the parent request to the doctor."""
        async with atomic(self.db):
            lab_result = await self._get_result_for_update(result_id)
            if lab_result.status != LabResultStatus.VALIDATED:
                raise ConflictError(
                    f"Result is {lab_result.status.value}; it must be validated before sending"
                )

            request = await self.requests._get_request_for_update(lab_result.request_id)
            await self.requests._ensure_paid(request)

            lab_result.status = LabResultStatus.SENT
            lab_result.sent_at = utcnow()
            request.status = RequestStatus.SENT_TO_DOCTOR

        logger.log_info(
            {
                "event_type": "lab_result_sent",
                "result_id": str(lab_result.id),
                "request_id": str(request.id),
                "sent_by": str(current_user.id),
            }
        )
        return lab_result

    # ============= Reads =============
    def _scoped_results_query(self, current_user: User):
        """
        Results visible to ``current_user``, scoped through the parent request.

        Doctors see their own requests' results, and only once sent.
        """
        query = apply_scope(self.repo.results_query(), LabRequest, current_user)
        if current_user.role == UserRole.DOCTOR.value:
            query = query.where(LabResult.status == LabResultStatus.SENT)
        return query

    async def get_result(self, result_id: uuid.UUID, current_user: User) -> LabResult:
        query = self._scoped_results_query(current_user).where(LabResult.id == result_id)
        lab_result = (await self.db.execute(query)).scalars().first()
        if not lab_result:
            raise NotFoundError("Lab result not found")
        return lab_result

    async def list_results(
        self,
        current_user: User,
        params: PaginationParams,
        status: Optional[LabResultStatus] = None,
        request_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse:
        query = self._scoped_results_query(current_user)
        if status:
            query = query.where(LabResult.status == status)
        if request_id:
            query = query.where(LabResult.request_id == request_id)
        return await Paginator.paginate(self.db, query, params, LabResultResponseSchema)


class DoctorResultService:
    """Delivered lab and imaging results, merged for the ordering doctor."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.lab_repo = AncillaryRequestRepository(db, RequestKind.LAB)
        self.imaging_repo = AncillaryRequestRepository(db, RequestKind.IMAGING)

    @staticmethod
    def _lines(request: AncillaryRequestMixin) -> List[RequestExamLineSchema]:
        return [
            RequestExamLineSchema.model_validate(line, from_attributes=True)
            for line in request.exams
        ]

    def _from_lab(self, request: LabRequest) -> DoctorResultSchema:
        sent = next(
            (r for r in request.results if r.status == LabResultStatus.SENT), None
        )
        delivered_at: datetime = (sent.sent_at if sent else None) or request.updated_at
        return DoctorResultSchema(
            kind=RequestKind.LAB,
            request_id=request.id,
            patient_id=request.patient_id,
            doctor_id=request.doctor_id,
            technician_id=request.technician_id,
            total_amount=request.total_amount,
            exams=self._lines(request),
            delivered_at=delivered_at,
            lab_result=LabResultResponseSchema.model_validate(sent, from_attributes=True)
            if sent
            else None,
        )

    def _from_imaging(self, request: ImagingRequest) -> DoctorResultSchema:
        return DoctorResultSchema(
            kind=RequestKind.IMAGING,
            request_id=request.id,
            patient_id=request.patient_id,
            doctor_id=request.doctor_id,
            technician_id=request.technician_id,
            total_amount=request.total_amount,
            exams=self._lines(request),
            delivered_at=request.completed_at or request.updated_at,
            imaging_results=request.results,
        )

    def _repo(self, kind: RequestKind) -> AncillaryRequestRepository:
        return self.lab_repo if kind == RequestKind.LAB else self.imaging_repo

    def _build(self, request: AncillaryRequestMixin) -> DoctorResultSchema:
        if isinstance(request, LabRequest):
            return self._from_lab(request)
        return self._from_imaging(request)

    async def list_results(
        self, current_user: User, params: PaginationParams
    ) -> PaginatedResponse:
        """
        One page of delivered results across both kinds, newest first.

        The page is chosen in SQL over a union of (kind, id, delivered_at)
        rows; only the requests on that page are loaded.
        """
        doctor_id = None if current_user.is_administrator else current_user.id

        index = union_all(
            self.lab_repo.delivered_index_query(doctor_id),
            self.imaging_repo.delivered_index_query(doctor_id),
        ).subquery()
        total_items = (
            await self.db.execute(select(func.count()).select_from(index))
        ).scalar() or 0

        page_rows = (
            await self.db.execute(
                select(index.c.kind, index.c.request_id)
                .order_by(index.c.delivered_at.desc(), index.c.request_id.desc())
                .offset(params.skip)
                .limit(params.limit)
            )
        ).all()

        loaded = {}
        for kind in RequestKind:
            ids = [row.request_id for row in page_rows if row.kind == kind.value]
            for request in await self._repo(kind).get_requests_by_ids(ids):
                loaded[(kind.value, request.id)] = request

        return PaginatedResponse(
            items=[self._build(loaded[(row.kind, row.request_id)]) for row in page_rows],
            page_info=Paginator.create_page_info(
                total_items, params.page, params.page_size
            ),
        )

    async def get_result(
        self, kind: RequestKind, request_id: uuid.UUID, current_user: User
    ) -> DoctorResultSchema:
        """A single delivered request; undelivered or foreign ones are not found."""
        doctor_id = None if current_user.is_administrator else current_user.id
        request = await self._repo(kind).get_delivered_request(request_id, doctor_id)
        if not request:
            raise NotFoundError(f"No delivered {kind.value} result for this request")
        return self._build(request)
