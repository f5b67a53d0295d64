"""HTTP surface of the verification workflow and the admin console."""
import httpx
import pytest

from app.services.verification_service import VerificationService
from helpers import auth_headers, registration_payload, registry_with, required_documents


def declining_registry():
    return registry_with(lambda r: httpx.Response(200, json={"success": False}))


async def register_and_upload(client, user):
    headers = auth_headers(user)
    response = await client.post("/doctor-verification/register", json=registration_payload(), headers=headers)
    assert response.status_code == 201
    response = await client.post(
        "/doctor-verification/documents", json={"documents": required_documents()}, headers=headers
    )
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_health(async_client):
    response = await async_client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "ok"
    assert body["cache"] == "ok"


@pytest.mark.asyncio
async def test_endpoints_require_a_valid_token(async_client):
    response = await async_client.get("/doctor-verification/status")
    assert response.status_code in (401, 403)

    response = await async_client.get(
        "/doctor-verification/status", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_role_checks(async_client, make_user, admin_user):
    patient = make_user("patient")

    response = await async_client.post(
        "/doctor-verification/register", json=registration_payload(), headers=auth_headers(patient)
    )
    assert response.status_code == 403

    response = await async_client.get("/admin/verifications/pending", headers=auth_headers(patient))
    assert response.status_code == 403

    response = await async_client.get("/admin/verifications/pending", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_register_upload_and_status(async_client, doctor_user, scheduled_tasks):
    record = await register_and_upload(async_client, doctor_user)

    assert record["status"] == "documents_uploaded"
    assert record["issuing_council"] == "NMC"
    assert [d["doc_type"] for d in record["documents"]] == ["nmc_license", "medical_degree", "govt_id_aadhaar"]
    assert scheduled_tasks[0].args == [record["id"]]

    response = await async_client.get("/doctor-verification/status", headers=auth_headers(doctor_user))
    assert response.status_code == 200
    view = response.json()
    assert view["status"] == "documents_uploaded"
    assert view["progress"] == 25
    assert view["documents"] == 3
    assert [e["action"] for e in view["timeline"]] == ["registration_initiated", "documents_uploaded"]


@pytest.mark.asyncio
async def test_service_errors_carry_codes(async_client, doctor_user):
    headers = auth_headers(doctor_user)

    response = await async_client.post(
        "/doctor-verification/register",
        json=registration_payload(license_number="BAD-1"),
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_license_format"

    response = await async_client.get("/doctor-verification/status", headers=headers)
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "verification_not_found"

    await async_client.post("/doctor-verification/register", json=registration_payload(), headers=headers)
    response = await async_client.post("/doctor-verification/register", json=registration_payload(), headers=headers)
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "duplicate_verification"

    response = await async_client.post(
        "/doctor-verification/documents",
        json={"documents": required_documents()[:1]},
        headers=headers,
    )
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "missing_required_documents"
    assert detail["missing"] == ["medical_degree", "government_id"]


@pytest.mark.asyncio
async def test_request_body_validation(async_client, doctor_user):
    response = await async_client.post(
        "/doctor-verification/register",
        json=registration_payload(consultation_fee=50),
        headers=auth_headers(doctor_user),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_admin_review_flow(async_client, db_session, doctor_user, admin_user):
    record = await register_and_upload(async_client, doctor_user)
    VerificationService.run_automated_verification(db_session, record["id"], registry=declining_registry())

    admin = auth_headers(admin_user)
    pending = (await async_client.get("/admin/verifications/pending", headers=admin)).json()
    assert [p["id"] for p in pending] == [record["id"]]
    assert pending[0]["status"] == "manual_review"

    detail = (await async_client.get(f"/admin/verifications/{record['id']}", headers=admin)).json()
    document_id = detail["documents"][0]["id"]

    response = await async_client.post(
        f"/admin/verifications/{record['id']}/documents/{document_id}/review",
        json={"verified": True, "notes": "Matches council register"},
        headers=admin,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "verified"

    response = await async_client.post(f"/admin/verifications/{record['id']}/hold", headers=admin)
    assert response.status_code == 200
    assert response.json()["status"] == "manual_review"

    response = await async_client.post(
        f"/admin/verifications/{record['id']}/approve", json={"notes": "Verified by phone"}, headers=admin
    )
    assert response.status_code == 200
    approved = response.json()
    assert approved["status"] == "approved"
    assert approved["doctor_id"] is not None
    assert approved["reviewed_by"] == admin_user.id

    response = await async_client.post(f"/admin/verifications/{record['id']}/approve", headers=admin)
    assert response.status_code == 409
    assert response.json()["detail"]["required_status"] == ["manual_review"]

    response = await async_client.post(
        f"/admin/verifications/{record['id']}/suspend", json={"reason": "Complaint upheld"}, headers=admin
    )
    assert response.json()["status"] == "suspended"

    stats = (await async_client.get("/admin/verifications/stats", headers=admin)).json()
    assert stats["by_status"]["suspended"] == 1


@pytest.mark.asyncio
async def test_rejection_and_appeal_over_http(async_client, db_session, doctor_user, admin_user):
    record = await register_and_upload(async_client, doctor_user)
    VerificationService.run_automated_verification(db_session, record["id"], registry=declining_registry())
    admin = auth_headers(admin_user)
    doctor = auth_headers(doctor_user)

    response = await async_client.post(
        f"/admin/verifications/{record['id']}/reject",
        json={"reason": "License not found in council register"},
        headers=admin,
    )
    assert response.json()["rejection_reason"] == "License not found in council register"

    response = await async_client.post("/doctor-verification/appeal", json={"reason": "short"}, headers=doctor)
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "validation_failed"

    response = await async_client.post(
        "/doctor-verification/appeal",
        json={"reason": "My registration was renewed in March.", "supporting_documents": ["s3://docs/renewal.pdf"]},
        headers=doctor,
    )
    assert response.status_code == 200
    assert response.json()["status"] == "appeal_pending"

    response = await async_client.post(
        "/doctor-verification/appeal", json={"reason": "Second attempt at an appeal."}, headers=doctor
    )
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "appeal_already_submitted"

    response = await async_client.post(
        f"/admin/verifications/{record['id']}/appeal-decision", json={"accept": True}, headers=admin
    )
    assert response.json()["status"] == "manual_review"

    response = await async_client.post(
        f"/admin/verifications/{record['id']}/request-documents",
        json={"documents": ["experience_certificate"], "notes": "Send renewal proof"},
        headers=admin,
    )
    assert response.json()["status"] == "pending_documents"
    assert response.json()["requested_documents"] == ["experience_certificate"]

    view = (await async_client.get("/doctor-verification/status", headers=doctor)).json()
    assert view["requested_documents"] == ["experience_certificate"]
    assert view["appeal"]["status"] == "accepted"


@pytest.mark.asyncio
async def test_high_risk_listing_and_risk_stats(async_client, db_session, make_user, admin_user):
    risky = make_user("doctor", email="risky@mailinator.com", phone="123", city="Delhi")
    record = await register_and_upload(async_client, risky)
    VerificationService.run_automated_verification(db_session, record["id"], registry=declining_registry())

    admin = auth_headers(admin_user)
    high = (await async_client.get("/admin/verifications/high-risk", headers=admin)).json()
    assert [h["id"] for h in high] == [record["id"]]
    assert high[0]["risk_level"] in ("high", "critical")

    stats = (await async_client.get("/admin/risk/stats", headers=admin)).json()
    assert "duplicate_accounts" in stats["factors"]
