from typing import Optional
import uuid

from sqlalchemy import Select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.patient_model import Bed, Patient


class PatientRepository:
    """Repository layer for patients and beds."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_patient_by_id(self, patient_id: uuid.UUID) -> Optional[Patient]:
        result = await self.db.execute(select(Patient).where(Patient.id == patient_id))
        return result.scalars().first()

    def list_patients_query(self, search: Optional[str] = None) -> Select:
        query = select(Patient)
        if search:
            term = f"%{search.strip()}%"
            query = query.where(
                or_(
                    Patient.first_name.ilike(term),
                    Patient.last_name.ilike(term),
                    Patient.patient_number.ilike(term),
                    Patient.phone.ilike(term),
                )
            )
        return query.order_by(Patient.created_at.desc())

    async def get_last_patient_number(self, prefix: str) -> Optional[str]:
        """Highest patient number sharing ``prefix`` (e.g. ``HSP-2026-``)."""
        result = await self.db.execute(
            select(func.max(Patient.patient_number)).where(
                Patient.patient_number.like(f"{prefix}%")
            )
        )
        return result.scalar()

    async def create_patient(self, patient: Patient) -> Patient:
        self.db.add(patient)
        await self.db.flush()
        return patient

    async def get_bed_for_update(self, bed_id: uuid.UUID) -> Optional[Bed]:
        result = await self.db.execute(
            select(Bed).where(Bed.id == bed_id).with_for_update()
        )
        return result.scalars().first()
