"""Shared builders for test payloads, tokens and registry fakes."""
import httpx


def auth_headers(user):
    from app.core.security import create_access_token

    token, _ = create_access_token(user_id=user.id, email=user.email, user_type=user.user_type)
    return {"Authorization": f"Bearer {token}"}


def registration_payload(**overrides):
    payload = {
        "license_number": "NMC1234567890",
        "specialization": "Cardiology",
        "qualification": "MBBS, MD (Cardiology)",
        "experience": 10,
        "consultation_fee": 800,
        "clinic_name": "Heart Care Clinic",
        "clinic_address": "12 MG Road, Kochi",
        "working_hours": {"start": "09:00", "end": "17:00"},
        "working_days": ["monday", "tuesday", "wednesday", "thursday", "friday"],
        "compliance": {
            "terms_accepted": True,
            "privacy_policy_accepted": True,
            "code_of_conduct_accepted": True,
            "data_processing_consent": True,
            "aadhaar_consent": True,
        },
    }
    payload.update(overrides)
    return payload


def required_documents():
    return [
        {"doc_type": "nmc_license", "file_name": "license.pdf", "file_url": "s3://docs/license.pdf",
         "file_size": 120_000, "mime_type": "application/pdf"},
        {"doc_type": "medical_degree", "file_name": "degree.pdf", "file_url": "s3://docs/degree.pdf",
         "file_size": 240_000, "mime_type": "application/pdf"},
        {"doc_type": "govt_id_aadhaar", "file_name": "aadhaar.jpg", "file_url": "s3://docs/aadhaar.jpg",
         "file_size": 80_000, "mime_type": "image/jpeg"},
    ]


def registry_with(handler, requests_per_minute=60):
    """License registry wired to an `httpx.MockTransport` handler."""
    from app.services.license_registry_service import LicenseRegistryService

    return LicenseRegistryService(
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        requests_per_minute=requests_per_minute,
        credentials=lambda authority: {"base_url": "https://registry.test", "api_key": "test-key"},
    )


def confirming_handler(request):
    return httpx.Response(
        200,
        json={
            "success": True,
            "doctorName": "Asha Menon",
            "registrationDate": "2012-06-01",
            "status": "active",
            "specialization": "Cardiology",
        },
    )


