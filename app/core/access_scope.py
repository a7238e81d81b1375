"""
Role-scoped visibility for list queries.

Every listing in the API goes through ``apply_scope`` so that the rules
below are written once: doctors see their own clinical records,
technicians see only paid ancillary requests, pharmacy staff see
prescriptions and pharmacy payments, and reception/administrators see
everything.
"""

from typing import Callable, Dict

from sqlalchemy import Select, false

from app.models.ancillary_model import AncillaryRequestMixin
from app.models.care_model import Prescription
from app.models.patient_model import Patient
from app.models.payment_model import Payment
from app.models.user_model import User
from app.schemas.payment_schemas import PaymentStatus, PaymentType
from app.schemas.user_schemas import UserRole

ScopeRule = Callable[[Select, type, User], Select]


def _unrestricted(query: Select, entity: type, principal: User) -> Select:
    return query


def _doctor_scope(query: Select, entity: type, principal: User) -> Select:
    if hasattr(entity, "doctor_id"):
        return query.where(entity.doctor_id == principal.id)
    if entity in (Patient,):
        return query
    return query.where(false())


def _technician_scope(query: Select, entity: type, principal: User) -> Select:
    if issubclass(entity, AncillaryRequestMixin):
        return query.where(entity.payment.has(Payment.status == PaymentStatus.PAID))
    if entity in (Patient,):
        return query
    return query.where(false())


def _pharmacy_scope(query: Select, entity: type, principal: User) -> Select:
    if entity in (Patient, Prescription):
        return query
    if entity is Payment:
        return query.where(Payment.type == PaymentType.PHARMACY)
    return query.where(false())


SCOPE_RULES: Dict[str, ScopeRule] = {
    UserRole.ADMINISTRATOR.value: _unrestricted,
    UserRole.RECEPTION.value: _unrestricted,
    UserRole.DOCTOR.value: _doctor_scope,
    UserRole.LAB_TECHNICIAN.value: _technician_scope,
    UserRole.PHARMACY.value: _pharmacy_scope,
}


def apply_scope(query: Select, entity: type, principal: User) -> Select:
    """
    Restrict ``query`` over ``entity`` to what ``principal`` may see.

    Unknown or missing roles see nothing.
    """
    rule = SCOPE_RULES.get(principal.role)
    if rule is None:
        return query.where(false())
    return rule(query, entity, principal)
