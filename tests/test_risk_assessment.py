"""Risk assessment engine tests."""
from datetime import date

import pytest

from app.core.constants import RiskLevel
from app.schemas.risk import ExistingAccount, RiskCandidate
from app.services.risk_assessment_service import (
    FACTORS,
    RiskAssessmentService,
    RiskFactor,
    levenshtein_distance,
    name_similarity,
    risk_level_for,
)


def clean_candidate(**overrides):
    fields = {
        "user_id": 1,
        "name": "Asha Menon",
        "email": "asha.menon@example.com",
        "phone": "+919876543210",
        "license_number": "NMC1234567890",
        "specialization": "Cardiology",
        "consultation_fee": 800,
        "city": "Kochi",
        "state": "Kerala",
        "date_of_birth": date(1985, 3, 14),
        "experience": 10,
        "documents": ["nmc_license", "medical_degree", "govt_id_aadhaar"],
    }
    fields.update(overrides)
    return RiskCandidate(**fields)


def factor(assessment, name):
    return next(f for f in assessment.risk_factors if f.factor == name)


def test_clean_candidate_is_low_risk():
    assessment = RiskAssessmentService.assess(clean_candidate())

    assert assessment.risk_level == RiskLevel.LOW.value
    assert assessment.overall_risk_score < 30
    assert assessment.requires_manual_review is False
    assert assessment.error is None
    assert len(assessment.risk_factors) == len(FACTORS)
    assert "Standard verification process" in assessment.recommendations


def test_disposable_email_and_low_fee_reach_medium_tier():
    assessment = RiskAssessmentService.assess(
        clean_candidate(email="someone@mailinator.com", consultation_fee=50)
    )

    assert factor(assessment, "disposable_email").score == 20
    fee = factor(assessment, "consultation_fee_validation")
    assert fee.score == 10
    assert fee.details["expected_range"] == [500, 3000]
    assert fee.details["risk"] == "Suspiciously low fee"
    assert assessment.overall_risk_score >= 30
    assert assessment.risk_level == RiskLevel.MEDIUM.value


@pytest.mark.parametrize(
    "score,level",
    [(0, "low"), (29, "low"), (30, "medium"), (59, "medium"), (60, "high"), (79, "high"), (80, "critical"), (100, "critical")],
)
def test_tier_boundaries(score, level):
    assert risk_level_for(score).value == level


def test_duplicates_ignore_the_candidate_own_account():
    existing = [
        ExistingAccount(user_id=1, name="Asha Menon", email="asha.menon@example.com", phone="+919876543210"),
    ]
    assessment = RiskAssessmentService.assess(clean_candidate(), existing)
    assert factor(assessment, "duplicate_accounts").detected is False


def test_duplicate_email_phone_license_and_name():
    existing = [
        ExistingAccount(
            user_id=2,
            name="Asha Menon",
            email="ASHA.MENON@example.com",
            phone="+919876543210",
            license_number="nmc1234567890",
        ),
    ]
    result = factor(RiskAssessmentService.assess(clean_candidate(), existing), "duplicate_accounts")

    assert result.detected is True
    assert result.score == 25 + 20 + 30 + 15
    assert {d["type"] for d in result.details["duplicates"]} == {"email", "phone", "nmc_number", "name_similarity"}


def test_similar_but_distinct_name_is_not_flagged():
    existing = [ExistingAccount(user_id=2, name="Ravi Kumar", email="ravi@example.com")]
    result = factor(RiskAssessmentService.assess(clean_candidate(), existing), "duplicate_accounts")
    assert result.detected is False


def test_invalid_phone_and_missing_documents():
    assessment = RiskAssessmentService.assess(clean_candidate(phone="12345", documents=[]))
    assert factor(assessment, "phone_validation").score == 15
    assert factor(assessment, "document_authenticity").score == 20


def test_carrier_lookup():
    result = factor(RiskAssessmentService.assess(clean_candidate(phone="+917012345678")), "phone_validation")
    assert result.details["carrier"] == "Jio"


def test_high_risk_location():
    result = factor(RiskAssessmentService.assess(clean_candidate(city="Mumbai")), "location_risk")
    assert result.score == 10
    assert result.detected is True


def test_license_length_checks():
    assert factor(RiskAssessmentService.assess(clean_candidate(license_number=None)), "nmc_validation").score == 30
    assert factor(RiskAssessmentService.assess(clean_candidate(license_number="AB1")), "nmc_validation").score == 20


def test_experience_exceeding_age_is_flagged():
    today = date.today()
    result = factor(
        RiskAssessmentService.assess(
            clean_candidate(date_of_birth=date(today.year - 30, 1, 1), experience=20)
        ),
        "age_experience_validation",
    )
    assert result.score == 25
    assert "Experience exceeds possible years" in result.details["issues"]


def test_missing_age_or_experience():
    result = factor(RiskAssessmentService.assess(clean_candidate(date_of_birth=None)), "age_experience_validation")
    assert result.score == 15


def test_failing_factor_counts_as_high_risk():
    class Broken(RiskFactor):
        name = "nmc_validation"

        def evaluate(self, candidate, existing):
            raise RuntimeError("boom")

    assessment = RiskAssessmentService.assess(clean_candidate(), factors=[Broken()])
    result = assessment.risk_factors[0]
    assert result.severity == "high"
    assert result.detected is True
    assert result.score == 30
    assert result.details["error"] == "boom"


def test_score_is_clamped_to_100():
    existing = [
        ExistingAccount(
            user_id=2, name="Asha Menon", email="x@mailinator.com", phone="12345", license_number="AB1",
        )
    ]
    assessment = RiskAssessmentService.assess(
        clean_candidate(
            email="x@mailinator.com", phone="12345", license_number="AB1",
            consultation_fee=None, city="Delhi", documents=[], date_of_birth=None,
        ),
        existing,
    )
    assert assessment.overall_risk_score == 100
    assert assessment.risk_level == RiskLevel.CRITICAL.value
    assert assessment.requires_manual_review is True


def test_failed_assessment_requires_review():
    assessment = RiskAssessmentService.failed_assessment("database down")
    assert assessment.requires_manual_review is True
    assert assessment.error == "database down"
    assert assessment.risk_level == "critical"


def test_name_similarity():
    assert name_similarity("Dr. Asha Menon", "asha menon") < 1.0
    assert name_similarity("Asha Menon", "ASHA  MENON") == 1.0
    assert name_similarity("", "Asha") == 0.0
    assert levenshtein_distance("kitten", "sitting") == 3


def test_risk_stats_lists_every_factor():
    stats = RiskAssessmentService.risk_stats()
    assert stats["factors"] == [f.name for f in FACTORS]
    assert stats["risk_levels"]["medium"] == 30
    assert stats["consultation_fee_ranges"]["Cardiology"] == {"min": 500, "max": 3000}
