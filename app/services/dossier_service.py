from typing import Optional
import uuid

from sqlalchemy import select
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
from app.models.care_model import ConsultationDossier
from app.models.user_model import User
from app.repositories.care_repo import DossierRepository
from app.schemas.care_schemas import (
    AssignmentStatus,
    DossierResponseSchema,
    DossierStatus,
)
from app.schemas.user_schemas import UserRole

DOSSIER_ARCHIVED = "dossier archived"


def ensure_dossier_writable(dossier: Optional[ConsultationDossier]) -> None:
    """Reject new clinical writes against an archived dossier."""
    if dossier is not None and dossier.is_archived:
        raise ConflictError(DOSSIER_ARCHIVED)


def mark_dossier_completed(dossier: ConsultationDossier) -> None:
    """
    active -> completed, closing the episode's assignment with it.

    Used both by the explicit completion and by the consultation cascade.
    """
    dossier.status = DossierStatus.COMPLETED
    dossier.completed_at = utcnow()
    if dossier.assignment is not None:
        dossier.assignment.status = AssignmentStatus.COMPLETED


class DossierService:
    """
    Dossier lifecycle: active -> completed -> archived.

    Transitions are strictly forward and only the owning doctor drives them.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repo = DossierRepository(db)

    async def _get_for_update(self, dossier_id: uuid.UUID) -> ConsultationDossier:
        dossier = await self.repo.get_dossier_by_id(dossier_id, for_update=True)
        if not dossier:
            raise NotFoundError("Dossier not found")
        return dossier

    async def complete_dossier(
        self, dossier_id: uuid.UUID, current_user: User
    ) -> ConsultationDossier:
        async with atomic(self.db):
            dossier = await self._get_for_update(dossier_id)

            if dossier.doctor_id != current_user.id:
                raise ForbiddenError("Only the owning doctor can complete this dossier")
            if dossier.status != DossierStatus.ACTIVE:
                raise ConflictError(
                    f"Dossier is {dossier.status.value}; only an active dossier can be completed"
                )

            mark_dossier_completed(dossier)

        logger.log_info(
            {
                "event_type": "dossier_completed",
                "dossier_id": str(dossier.id),
                "doctor_id": str(current_user.id),
            }
        )
        return dossier

    async def archive_dossier(
        self, dossier_id: uuid.UUID, current_user: User, reason: str
    ) -> ConsultationDossier:
        async with atomic(self.db):
            dossier = await self._get_for_update(dossier_id)

            if (
                not current_user.has_role(UserRole.DOCTOR.value)
                or dossier.doctor_id != current_user.id
            ):
                raise ForbiddenError("Only the owning doctor can archive this dossier")
            if not reason or not reason.strip():
                raise ValidationError("An archive reason is required")
            if dossier.status != DossierStatus.COMPLETED:
                raise ConflictError(
                    f"Dossier is {dossier.status.value}; only a completed dossier can be archived"
                )

            dossier.status = DossierStatus.ARCHIVED
            dossier.archived_at = utcnow()
            dossier.archived_by_id = current_user.id
            dossier.archive_reason = reason.strip()

        logger.log_info(
            {
                "event_type": "dossier_archived",
                "dossier_id": str(dossier.id),
                "archived_by": str(current_user.id),
            }
        )
        return dossier

    async def get_dossier(
        self, dossier_id: uuid.UUID, current_user: User
    ) -> ConsultationDossier:
        query = apply_scope(
            select(ConsultationDossier).where(ConsultationDossier.id == dossier_id),
            ConsultationDossier,
            current_user,
        )
        dossier = (await self.db.execute(query)).scalars().first()
        if not dossier:
            raise NotFoundError("Dossier not found")
        return dossier

    async def list_dossiers(
        self,
        current_user: User,
        params: PaginationParams,
        status: Optional[DossierStatus] = None,
    ) -> PaginatedResponse:
        query = apply_scope(
            self.repo.list_dossiers_query(status), ConsultationDossier, current_user
        )
        return await Paginator.paginate(self.db, query, params, DossierResponseSchema)
