"""
Shared test fixtures and configuration for pytest.

Every test gets a fresh in-memory SQLite database with the default roles
seeded. ``StaticPool`` keeps the single connection alive so the schema
survives across sessions.
"""

from decimal import Decimal
from typing import AsyncGenerator, Optional
import itertools

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.api.dependencies import get_db
from app.core.rbac_init import initialize_rbac
from app.core.security import create_access_token, get_password_hash
from app.db.base import Base
from app.main import app
from app.models.ancillary_model import ImagingExam, LabExam
from app.models.care_model import Consultation, ConsultationDossier
from app.models.patient_model import Bed, Patient
from app.models.payment_model import Payment
from app.models.pharmacy_model import PharmacyProduct
from app.models.rbac import Role
from app.models.user_model import User
from app.schemas.care_schemas import AssignmentCreateSchema, ConsultationUpsertSchema
from app.schemas.patient_schemas import BedType, Gender
from app.schemas.payment_schemas import PaymentMethod, PaymentStatus, PaymentType
from app.schemas.user_schemas import UserRole
from app.services.assignment_service import AssignmentService
from app.services.consultation_service import ConsultationService


# Test database configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

PASSWORD = "Secret123!"
_sequence = itertools.count(1)


@pytest.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.

    This fixture:
    - Creates all tables
    - Initializes RBAC (roles and permissions)
    - Yields a session
    - Drops all tables after test
    """
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        await initialize_rbac(session)
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def override_get_db(db_session: AsyncSession):
    """Override the get_db dependency for testing."""

    async def _override_get_db():
        yield db_session

    return _override_get_db


@pytest.fixture
async def client(override_get_db) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test/api/v1") as ac:
        yield ac
    app.dependency_overrides.clear()


# ============= Factories =============
async def create_user(
    db: AsyncSession,
    role: UserRole,
    username: Optional[str] = None,
    is_active: bool = True,
) -> User:
    n = next(_sequence)
    username = username or f"{role.value}{n}"
    role_row = (
        await db.execute(select(Role).where(Role.name == role.value))
    ).scalar_one()
    user = User(
        username=username,
        email=f"{username}@example.com",
        full_name=f"{role.value.title()} {n}",
        password=get_password_hash(PASSWORD),
        is_active=is_active,
        roles=[role_row],
    )
    db.add(user)
    await db.commit()
    return user


async def create_patient(db: AsyncSession, first_name: str = "Ama") -> Patient:
    n = next(_sequence)
    patient = Patient(
        patient_number=f"HSP-2000-{n:05d}",
        first_name=first_name,
        last_name="Mensah",
        gender=Gender.FEMALE,
        phone=f"024{n:07d}",
        bed=None,
    )
    db.add(patient)
    await db.commit()
    return patient


async def create_payment(
    db: AsyncSession,
    patient: Patient,
    payment_type: PaymentType = PaymentType.CONSULTATION,
    status: PaymentStatus = PaymentStatus.PAID,
    amount: Decimal = Decimal("50.00"),
) -> Payment:
    payment = Payment(
        patient_id=patient.id,
        amount=amount,
        method=PaymentMethod.CASH,
        status=status,
        type=payment_type,
        items=[],
    )
    db.add(payment)
    await db.commit()
    return payment


async def create_exam(
    db: AsyncSession, model=LabExam, name: str = "Full blood count", price: str = "30.00",
    is_active: bool = True,
):
    exam = model(name=name, price=Decimal(price), is_active=is_active)
    db.add(exam)
    await db.commit()
    return exam


async def create_bed(db: AsyncSession, number: Optional[str] = None) -> Bed:
    bed = Bed(number=number or f"B-{next(_sequence)}", type=BedType.CLASSIC)
    db.add(bed)
    await db.commit()
    return bed


async def create_product(
    db: AsyncSession, name: str = "Paracetamol 500mg", price: str = "2.50", stock: int = 10
) -> PharmacyProduct:
    product = PharmacyProduct(name=name, price=Decimal(price), stock=stock, min_stock=2)
    db.add(product)
    await db.commit()
    return product


async def open_episode(db: AsyncSession, patient: Patient, doctor: User, reception: User):
    """Paid consultation payment, assignment and active dossier for ``patient``."""
    payment = await create_payment(db, patient)
    _, dossier = await AssignmentService(db).create_assignment(
        AssignmentCreateSchema(
            patient_id=patient.id, doctor_id=doctor.id, payment_id=payment.id
        ),
        reception,
    )
    return dossier


async def start_consultation(
    db: AsyncSession, dossier: ConsultationDossier, doctor: User
) -> Consultation:
    consultation, _ = await ConsultationService(db).upsert_consultation(
        ConsultationUpsertSchema(
            dossier_id=dossier.id, patient_id=dossier.patient_id, symptoms="Fever"
        ),
        doctor,
    )
    return consultation


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


async def refetch(db: AsyncSession, model, ident):
    """Load a fresh copy of a row; rolled-back sessions expire everything."""
    return await db.get(model, ident, populate_existing=True)


async def reload(db: AsyncSession, *objects):
    """Refresh objects expired by a rolled-back transaction."""
    for obj in objects:
        await db.refresh(obj)


# ============= Staff fixtures =============
@pytest.fixture
async def admin(db_session: AsyncSession) -> User:
    return await create_user(db_session, UserRole.ADMINISTRATOR)


@pytest.fixture
async def reception(db_session: AsyncSession) -> User:
    return await create_user(db_session, UserRole.RECEPTION)


@pytest.fixture
async def doctor(db_session: AsyncSession) -> User:
    return await create_user(db_session, UserRole.DOCTOR)


@pytest.fixture
async def other_doctor(db_session: AsyncSession) -> User:
    return await create_user(db_session, UserRole.DOCTOR)


@pytest.fixture
async def technician(db_session: AsyncSession) -> User:
    return await create_user(db_session, UserRole.LAB_TECHNICIAN)


@pytest.fixture
async def pharmacist(db_session: AsyncSession) -> User:
    return await create_user(db_session, UserRole.PHARMACY)


@pytest.fixture
async def patient(db_session: AsyncSession) -> Patient:
    return await create_patient(db_session)


@pytest.fixture
async def lab_exam(db_session: AsyncSession) -> LabExam:
    return await create_exam(db_session, LabExam, "Full blood count", "30.00")


@pytest.fixture
async def imaging_exam(db_session: AsyncSession) -> ImagingExam:
    return await create_exam(db_session, ImagingExam, "Chest X-ray", "80.00")


# Helper functions for tests
def assert_error(response, status_code: int, kind: str):
    assert response.status_code == status_code, response.text
    body = response.json()
    assert body["error"]["kind"] == kind
    assert body["error"]["message"]


def assert_paginated_response(data: dict):
    """Assert that response is a valid paginated response."""
    assert "items" in data
    assert "page_info" in data
    assert "total_items" in data["page_info"]
    assert "total_pages" in data["page_info"]
    assert "current_page" in data["page_info"]
    assert "has_next" in data["page_info"]
    assert "has_previous" in data["page_info"]
