from typing import Dict, List, NamedTuple, Optional, Sequence, Type
import uuid

from sqlalchemy import Select, case, func, literal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.ancillary_model import (
    AncillaryRequestMixin,
    ImagingExam,
    ImagingRequest,
    ImagingRequestExam,
    LabExam,
    LabRequest,
    LabRequestExam,
    LabResult,
)
from app.models.payment_model import Payment
from app.schemas.ancillary_schemas import (
    EffectiveStatus,
    LabResultStatus,
    RequestKind,
    RequestStatus,
)
from app.schemas.payment_schemas import PaymentStatus, PaymentType


class RequestKindConfig(NamedTuple):
    """Tables and ledger settings backing one ancillary request kind."""

    request_model: Type[AncillaryRequestMixin]
    exam_model: type
    line_model: type
    payment_type: PaymentType
    reference_prefix: str


ANCILLARY_KINDS: Dict[RequestKind, RequestKindConfig] = {
    RequestKind.LAB: RequestKindConfig(
        request_model=LabRequest,
        exam_model=LabExam,
        line_model=LabRequestExam,
        payment_type=PaymentType.LAB,
        reference_prefix="LAB",
    ),
    RequestKind.IMAGING: RequestKindConfig(
        request_model=ImagingRequest,
        exam_model=ImagingExam,
        line_model=ImagingRequestExam,
        payment_type=PaymentType.IMAGING,
        reference_prefix="IMG",
    ),
}


def effective_status_expression(model: Type[AncillaryRequestMixin]):
    """
    SQL projection of a request's status through its gating payment.

    Requires ``Payment`` to be joined on ``model.payment_id``. Mirrors
    ``compute_effective_status``.
    """
    return case(
        (Payment.status == PaymentStatus.CANCELLED, EffectiveStatus.CANCELLED.value),
        (model.status == RequestStatus.SENT_TO_DOCTOR, EffectiveStatus.DELIVERED.value),
        (Payment.status == PaymentStatus.PENDING, EffectiveStatus.AWAITING_PAYMENT.value),
        else_=EffectiveStatus.READY.value,
    )


class AncillaryRequestRepository:
    """Repository for one request kind (lab or imaging)."""

    def __init__(self, db: AsyncSession, kind: RequestKind):
        self.db = db
        self.kind = kind
        self.config = ANCILLARY_KINDS[kind]
        self.model = self.config.request_model

    async def get_exams(self, exam_ids: Sequence[uuid.UUID]) -> List:
        exam_model = self.config.exam_model
        result = await self.db.execute(
            select(exam_model).where(exam_model.id.in_(list(exam_ids)))
        )
        return list(result.scalars().all())

    async def get_request_by_id(
        self, request_id: uuid.UUID, for_update: bool = False
    ) -> Optional[AncillaryRequestMixin]:
        query = select(self.model).where(self.model.id == request_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalars().first()

    async def create_request(self, request: AncillaryRequestMixin) -> AncillaryRequestMixin:
        self.db.add(request)
        await self.db.flush()
        return request

    def base_query(self) -> Select:
        return select(self.model).join(Payment, Payment.id == self.model.payment_id)

    def list_requests_query(
        self,
        effective_status: Optional[EffectiveStatus] = None,
        patient_id: Optional[uuid.UUID] = None,
    ) -> Select:
        query = self.base_query()
        if effective_status:
            query = query.where(
                effective_status_expression(self.model) == effective_status.value
            )
        if patient_id:
            query = query.where(self.model.patient_id == patient_id)
        return query.order_by(self.model.created_at.desc())

    def technician_queue_query(
        self,
        technician_id: Optional[uuid.UUID] = None,
        include_delivered: bool = False,
    ) -> Select:
        """Requests fulfilment staff may work on: gating payment paid, always."""
        visible = [EffectiveStatus.READY.value]
        if include_delivered:
            visible.append(EffectiveStatus.DELIVERED.value)

        query = self.base_query().where(
            Payment.status == PaymentStatus.PAID,
            effective_status_expression(self.model).in_(visible),
        )
        if technician_id:
            query = query.where(self.model.technician_id == technician_id)
        return query.order_by(self.model.created_at.asc())

    def _delivered_filters(self, doctor_id: Optional[uuid.UUID] = None) -> list:
        """
        Requests whose results the ordering doctor may read.

        Lab: sent_to_doctor with a sent result. Imaging: sent_to_doctor with
        non-empty result text.
        """
        filters = [self.model.status == RequestStatus.SENT_TO_DOCTOR]
        if self.kind == RequestKind.LAB:
            filters.append(
                LabRequest.results.any(LabResult.status == LabResultStatus.SENT)
            )
        else:
            filters += [ImagingRequest.results.is_not(None), ImagingRequest.results != ""]
        if doctor_id:
            filters.append(self.model.doctor_id == doctor_id)
        return filters

    def delivered_at_expression(self):
        """When the results reached the doctor: send time for lab, completion for imaging."""
        if self.kind == RequestKind.LAB:
            sent_at = (
                select(func.max(LabResult.sent_at))
                .where(
                    LabResult.request_id == LabRequest.id,
                    LabResult.status == LabResultStatus.SENT,
                )
                .correlate(LabRequest)
                .scalar_subquery()
            )
            return func.coalesce(sent_at, LabRequest.updated_at)
        return func.coalesce(ImagingRequest.completed_at, ImagingRequest.updated_at)

    def delivered_index_query(self, doctor_id: Optional[uuid.UUID] = None) -> Select:
        """(kind, request_id, delivered_at) rows, for merging lab and imaging."""
        return select(
            literal(self.kind.value).label("kind"),
            self.model.id.label("request_id"),
            self.delivered_at_expression().label("delivered_at"),
        ).where(*self._delivered_filters(doctor_id))

    async def get_delivered_request(
        self, request_id: uuid.UUID, doctor_id: Optional[uuid.UUID] = None
    ) -> Optional[AncillaryRequestMixin]:
        result = await self.db.execute(
            select(self.model).where(
                self.model.id == request_id, *self._delivered_filters(doctor_id)
            )
        )
        return result.scalars().first()

    async def get_requests_by_ids(
        self, request_ids: Sequence[uuid.UUID]
    ) -> List[AncillaryRequestMixin]:
        if not request_ids:
            return []
        result = await self.db.execute(
            select(self.model).where(self.model.id.in_(list(request_ids)))
        )
        return list(result.scalars().all())


class LabResultRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    def results_query(self) -> Select:
        """Lab results joined to their request, newest first."""
        return (
            select(LabResult)
            .join(LabRequest, LabRequest.id == LabResult.request_id)
            .order_by(LabResult.created_at.desc())
        )

    async def get_result_by_id(
        self, result_id: uuid.UUID, for_update: bool = False
    ) -> Optional[LabResult]:
        query = select(LabResult).where(LabResult.id == result_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalars().first()

    async def get_current_result(self, request_id: uuid.UUID) -> Optional[LabResult]:
        result = await self.db.execute(
            select(LabResult)
            .where(LabResult.request_id == request_id)
            .order_by(LabResult.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def create_result(self, lab_result: LabResult) -> LabResult:
        self.db.add(lab_result)
        await self.db.flush()
        return lab_result
