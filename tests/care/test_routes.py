"""
HTTP Route Tests

Exercise the API through the ASGI app: status codes, the error envelope
and role guards.
"""

from decimal import Decimal
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user_model import User
from app.schemas.ancillary_schemas import (
    AncillaryRequestCreateSchema,
    LabResultUpsertSchema,
    RequestKind,
)
from app.schemas.payment_schemas import PaymentMethod
from app.schemas.user_schemas import UserRole
from app.services.ancillary_service import AncillaryRequestService, LabResultService
from conftest import (
    PASSWORD,
    assert_error,
    assert_paginated_response,
    auth_headers,
    create_product,
    create_user,
    open_episode,
)


@pytest.mark.asyncio
@pytest.mark.integration
class TestAuthRoutes:
    async def test_login_and_me(self, client: AsyncClient, doctor: User):
        response = await client.post(
            "/auth/login", json={"username": doctor.username, "password": PASSWORD}
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["role"] == UserRole.DOCTOR.value

        me = await client.get(
            "/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"}
        )
        assert me.status_code == 200
        assert me.json()["username"] == doctor.username

    async def test_bad_password(self, client: AsyncClient, doctor: User):
        username = doctor.username

        response = await client.post(
            "/auth/login", json={"username": username, "password": "wrong-password"}
        )

        assert_error(response, 401, "auth_error")

    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/auth/me")

        assert_error(response, 401, "auth_error")

    async def test_garbage_token(self, client: AsyncClient):
        response = await client.get(
            "/auth/me", headers={"Authorization": "Bearer not-a-token"}
        )

        assert_error(response, 401, "auth_error")


@pytest.mark.asyncio
@pytest.mark.integration
class TestErrorEnvelope:
    async def test_body_validation_is_400(self, client: AsyncClient, reception: User):
        response = await client.post(
            "/payments", json={"amount": "10"}, headers=auth_headers(reception)
        )

        assert_error(response, 400, "validation_error")
        assert response.json()["error"]["details"]

    async def test_not_found(self, client: AsyncClient, reception: User):
        response = await client.get(
            f"/payments/{uuid.uuid4()}", headers=auth_headers(reception)
        )

        assert_error(response, 404, "not_found")

    async def test_conflict(self, client: AsyncClient, reception: User, patient):
        headers = auth_headers(reception)
        created = await client.post(
            "/payments",
            json={"patient_id": str(patient.id), "amount": "20.00", "type": "consultation"},
            headers=headers,
        )
        payment_id = created.json()["id"]
        await client.post(f"/payments/{payment_id}/cancel", headers=headers)

        response = await client.post(
            f"/payments/{payment_id}/settle", json={"method": "cash"}, headers=headers
        )

        assert_error(response, 409, "conflict")


@pytest.mark.asyncio
@pytest.mark.integration
class TestCareRoutes:
    async def test_consultation_upsert_status_codes(
        self, client: AsyncClient, db_session: AsyncSession, patient, doctor: User,
        reception: User,
    ):
        dossier = await open_episode(db_session, patient, doctor, reception)
        headers = auth_headers(doctor)
        payload = {
            "dossier_id": str(dossier.id),
            "patient_id": str(patient.id),
            "symptoms": "Headache",
        }

        first = await client.put("/consultations", json=payload, headers=headers)
        second = await client.put(
            "/consultations", json={**payload, "diagnosis": "Migraine"}, headers=headers
        )

        assert first.status_code == 201, first.text
        assert second.status_code == 200, second.text
        assert second.json()["id"] == first.json()["id"]
        assert second.json()["symptoms"] == "Headache"
        assert second.json()["diagnosis"] == "Migraine"

        listing = await client.get("/consultations", headers=headers)
        assert_paginated_response(listing.json())
        assert [item["id"] for item in listing.json()["items"]] == [first.json()["id"]]

    async def test_assignment_returns_dossier(
        self, client: AsyncClient, db_session: AsyncSession, patient, doctor: User,
        reception: User,
    ):
        headers = auth_headers(reception)
        payment = await client.post(
            "/payments",
            json={"patient_id": str(patient.id), "amount": "50.00", "type": "consultation"},
            headers=headers,
        )
        payload = {
            "patient_id": str(patient.id),
            "doctor_id": str(doctor.id),
            "payment_id": payment.json()["id"],
        }

        response = await client.post("/assignments", json=payload, headers=headers)
        again = await client.post("/assignments", json=payload, headers=headers)

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["dossier"]["assignment_id"] == body["assignment"]["id"]
        assert body["dossier"]["status"] == "active"
        assert_error(again, 409, "conflict")

    async def test_lab_request_flow(
        self, client: AsyncClient, patient, doctor: User, reception: User,
        technician: User, lab_exam,
    ):
        technician_id = str(technician.id)
        doctor_headers = auth_headers(doctor)
        desk_headers = auth_headers(reception)
        lab_headers = auth_headers(technician)

        created = await client.post(
            "/lab/requests",
            json={"patient_id": str(patient.id), "exam_ids": [str(lab_exam.id)]},
            headers=doctor_headers,
        )
        assert created.status_code == 201, created.text
        request_id = created.json()["id"]
        assert created.json()["effective_status"] == "awaiting_payment"

        early = await client.put(
            f"/lab/requests/{request_id}/result",
            json={"results": {"hb": 12}},
            headers=lab_headers,
        )
        assert_error(early, 409, "conflict")

        settled = await client.post(
            f"/lab/requests/{request_id}/settle",
            json={"method": "cash", "technician_id": technician_id},
            headers=desk_headers,
        )
        assert settled.status_code == 200, settled.text
        assert settled.json()["effective_status"] == "ready"

        queue = await client.get("/lab/requests/queue", headers=lab_headers)
        assert_paginated_response(queue.json())
        assert [item["id"] for item in queue.json()["items"]] == [request_id]

        draft = await client.put(
            f"/lab/requests/{request_id}/result",
            json={"results": {"hb": 12}},
            headers=lab_headers,
        )
        assert draft.status_code == 201, draft.text
        result_id = draft.json()["id"]

        validated = await client.post(
            f"/lab/results/{result_id}/validate", headers=lab_headers
        )
        sent = await client.post(f"/lab/results/{result_id}/send", headers=lab_headers)
        assert validated.json()["status"] == "validated"
        assert sent.json()["status"] == "sent"

        results = await client.get("/results", headers=doctor_headers)
        assert results.status_code == 200
        assert [item["request_id"] for item in results.json()["items"]] == [request_id]

        detail = await client.get(f"/results/lab/{request_id}", headers=doctor_headers)
        read = await client.get(f"/lab/results/{result_id}", headers=doctor_headers)
        assert detail.status_code == 200, detail.text
        assert detail.json()["lab_result"]["id"] == result_id
        assert read.json()["status"] == "sent"

    async def test_pharmacy_sale(
        self, client: AsyncClient, db_session: AsyncSession, patient, pharmacist: User
    ):
        product = await create_product(db_session, price="4.00", stock=5)

        response = await client.post(
            "/pharmacy/sales",
            json={
                "patient_id": str(patient.id),
                "items": [{"product_id": str(product.id), "quantity": 2}],
            },
            headers=auth_headers(pharmacist),
        )

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["type"] == "pharmacy"
        assert Decimal(body["amount"]) == Decimal("8.00")
        assert len(body["items"]) == 1


@pytest.mark.asyncio
@pytest.mark.integration
@pytest.mark.rbac
class TestRoleGuards:
    async def test_doctor_cannot_record_payment(
        self, client: AsyncClient, doctor: User, patient
    ):
        response = await client.post(
            "/payments",
            json={"patient_id": str(patient.id), "amount": "20.00", "type": "consultation"},
            headers=auth_headers(doctor),
        )

        assert_error(response, 403, "forbidden")

    async def test_reception_cannot_set_price(
        self, client: AsyncClient, reception: User
    ):
        response = await client.put(
            "/pricing/consultation", json={"price": "60.00"}, headers=auth_headers(reception)
        )

        assert_error(response, 403, "forbidden")

    async def test_admin_sets_price_and_reception_reads_it(
        self, client: AsyncClient, admin: User, reception: User
    ):
        admin_headers = auth_headers(admin)
        desk_headers = auth_headers(reception)

        updated = await client.put(
            "/pricing/consultation", json={"price": "60.00"}, headers=admin_headers
        )
        current = await client.get("/pricing/consultation", headers=desk_headers)

        assert updated.status_code == 200, updated.text
        assert Decimal(current.json()["price"]) == Decimal("60.00")

    async def test_technician_cannot_order_requests(
        self, client: AsyncClient, technician: User, patient, lab_exam
    ):
        response = await client.post(
            "/lab/requests",
            json={"patient_id": str(patient.id), "exam_ids": [str(lab_exam.id)]},
            headers=auth_headers(technician),
        )

        assert_error(response, 403, "forbidden")

    async def test_lab_result_reads_are_scoped(
        self, client: AsyncClient, db_session: AsyncSession, patient, doctor: User,
        technician: User, pharmacist: User, lab_exam,
    ):
        doctor_headers = auth_headers(doctor)
        pharmacy_headers = auth_headers(pharmacist)
        lab_headers = auth_headers(technician)
        requests = AncillaryRequestService(db_session, RequestKind.LAB)
        request = await requests.create_request(
            AncillaryRequestCreateSchema(patient_id=patient.id, exam_ids=[lab_exam.id]),
            doctor,
        )
        await requests.settle_request_payment(
            request.id, PaymentMethod.CASH, technician_id=technician.id
        )
        draft, _ = await LabResultService(db_session).upsert_result(
            request.id, LabResultUpsertSchema(results={"hb": 9.1}), technician
        )
        path = f"/lab/results/{draft.id}"

        as_doctor = await client.get(path, headers=doctor_headers)
        as_pharmacist = await client.get(path, headers=pharmacy_headers)
        as_technician = await client.get(path, headers=lab_headers)
        doctor_listing = await client.get("/lab/results", headers=doctor_headers)
        pharmacy_listing = await client.get("/lab/results", headers=pharmacy_headers)

        assert_error(as_doctor, 404, "not_found")
        assert_error(as_pharmacist, 403, "forbidden")
        assert as_technician.json()["status"] == "draft"
        assert doctor_listing.json()["items"] == []
        assert_error(pharmacy_listing, 403, "forbidden")

    async def test_undelivered_doctor_result_not_found(
        self, client: AsyncClient, doctor: User
    ):
        headers = auth_headers(doctor)

        missing = await client.get(f"/results/lab/{uuid.uuid4()}", headers=headers)
        bad_kind = await client.get(f"/results/xray/{uuid.uuid4()}", headers=headers)

        assert_error(missing, 404, "not_found")
        assert_error(bad_kind, 400, "validation_error")

    async def test_only_admin_creates_users(
        self, client: AsyncClient, admin: User, reception: User
    ):
        payload = {
            "username": "new.doctor",
            "email": "new.doctor@example.com",
            "password": "Str0ngPass!",
            "role": UserRole.DOCTOR.value,
        }

        denied = await client.post("/users", json=payload, headers=auth_headers(reception))
        created = await client.post("/users", json=payload, headers=auth_headers(admin))

        assert_error(denied, 403, "forbidden")
        assert created.status_code == 201, created.text
        assert created.json()["role"] == UserRole.DOCTOR.value

    async def test_suspended_account_token_rejected(
        self, client: AsyncClient, db_session: AsyncSession
    ):
        user = await create_user(db_session, UserRole.RECEPTION)
        headers = auth_headers(user)
        user.is_suspended = True
        await db_session.commit()

        response = await client.get("/auth/me", headers=headers)

        assert_error(response, 401, "auth_error")
