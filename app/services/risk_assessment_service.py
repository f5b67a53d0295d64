"""Fraud / eligibility risk scoring for doctor candidates.

The engine is a fixed list of independent factor evaluators. Every evaluator
runs on every assessment; a failing evaluator reports a high-risk result
instead of being skipped.
"""
import logging
import re
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from app.core.constants import RiskLevel
from app.schemas.risk import (
    ExistingAccount,
    RiskAssessment,
    RiskCandidate,
    RiskFactorResult,
)
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


RISK_WEIGHTS = {
    "duplicate_accounts": 25,
    "disposable_email": 20,
    "phone_validation": 15,
    "consultation_fee_validation": 10,
    "document_authenticity": 20,
    "location_risk": 10,
    "nmc_validation": 30,
    "age_experience_validation": 15,
}

# Lower bound of each tier
RISK_THRESHOLDS = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 30,
    RiskLevel.HIGH: 60,
    RiskLevel.CRITICAL: 80,
}

NEXT_ASSESSMENT_DAYS = {
    RiskLevel.LOW: 30,
    RiskLevel.MEDIUM: 15,
    RiskLevel.HIGH: 7,
    RiskLevel.CRITICAL: 3,
}

# INR
CONSULTATION_FEE_RANGES = {
    "General Medicine": (200, 1500),
    "Cardiology": (500, 3000),
    "Neurology": (800, 4000),
    "Orthopedics": (400, 2500),
    "Dermatology": (300, 2000),
    "Pediatrics": (200, 1200),
    "Gynecology": (400, 2500),
    "Psychiatry": (500, 3000),
    "Ophthalmology": (300, 2000),
    "ENT": (300, 2000),
    "Dentistry": (200, 1500),
    "Physiotherapy": (200, 1000),
    "Ayurveda": (100, 800),
    "Homeopathy": (100, 600),
    "Unani": (100, 600),
}
DEFAULT_SPECIALIZATION = "General Medicine"

HIGH_RISK_LOCATIONS = (
    "Mumbai", "Delhi", "Bangalore", "Chennai", "Kolkata",
    "Hyderabad", "Ahmedabad", "Pune", "Jaipur", "Lucknow",
)

DISPOSABLE_EMAIL_PROVIDERS = frozenset({
    "tempmail.org", "guerrillamail.com", "10minutemail.com",
    "mailinator.com", "throwawaymail.com", "mailnesia.com",
    "yopmail.com", "getnada.com", "sharklasers.com",
    "maildrop.cc", "mailcatch.com", "spam4.me",
})

VALID_PHONE_PATTERNS = (
    re.compile(r"^\+91[0-9]{10}$"),
    re.compile(r"^[0-9]{10}$"),
    re.compile(r"^[0-9]{12}$"),
)

# Leading two digits after +91
CARRIER_PREFIXES = {
    "Jio": tuple(str(n) for n in range(70, 80)),
    "Airtel": tuple(str(n) for n in range(80, 90)),
    "BSNL": tuple(str(n) for n in range(90, 100)),
}

NAME_SIMILARITY_THRESHOLD = 0.8
MIN_PRACTICE_AGE = 22
MAX_PRACTICE_AGE = 80

FACTOR_RECOMMENDATIONS = {
    "duplicate_accounts": "Investigate potential duplicate accounts",
    "disposable_email": "Request alternative email address",
    "phone_validation": "Verify phone number authenticity",
    "consultation_fee_validation": "Review consultation fee justification",
    "nmc_validation": "Verify NMC number with medical council",
    "age_experience_validation": "Confirm date of birth and years of experience",
    "document_authenticity": "Request the missing verification documents",
    "location_risk": "Apply enhanced checks for the practice location",
}

TIER_RECOMMENDATIONS = {
    RiskLevel.CRITICAL: [
        "Immediate manual review required",
        "Consider temporary suspension",
        "Request additional verification documents",
    ],
    RiskLevel.HIGH: [
        "Manual review recommended",
        "Request clarification on risk factors",
        "Enhanced monitoring required",
    ],
    RiskLevel.MEDIUM: [
        "Standard review process",
        "Monitor for changes in risk factors",
    ],
    RiskLevel.LOW: [
        "Standard verification process",
        "Routine monitoring",
    ],
}


# ---------------------------------------------------------------------------
# String helpers
# ---------------------------------------------------------------------------

def normalize_name(name: Optional[str]) -> str:
    return re.sub(r"[^a-z]", "", (name or "").lower())


def levenshtein_distance(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def name_similarity(name1: Optional[str], name2: Optional[str]) -> float:
    """Edit-distance similarity in [0, 1] on normalized names."""
    clean1, clean2 = normalize_name(name1), normalize_name(name2)
    if not clean1 or not clean2:
        return 0.0
    if clean1 == clean2:
        return 1.0
    longer = clean1 if len(clean1) >= len(clean2) else clean2
    return (len(longer) - levenshtein_distance(clean1, clean2)) / len(longer)


def calculate_age(dob: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    return today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))


def risk_level_for(score: int) -> RiskLevel:
    if score >= RISK_THRESHOLDS[RiskLevel.CRITICAL]:
        return RiskLevel.CRITICAL
    if score >= RISK_THRESHOLDS[RiskLevel.HIGH]:
        return RiskLevel.HIGH
    if score >= RISK_THRESHOLDS[RiskLevel.MEDIUM]:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


# ---------------------------------------------------------------------------
# Factor evaluators
# ---------------------------------------------------------------------------

class RiskFactor:
    """One independent check. Subclasses implement `evaluate`."""

    name: str = ""

    def evaluate(self, candidate: RiskCandidate, existing: Sequence[ExistingAccount]) -> RiskFactorResult:
        raise NotImplementedError

    def _result(self, score: int, description: str, severity: str, detected: bool, **details) -> RiskFactorResult:
        return RiskFactorResult(
            factor=self.name,
            score=max(0, min(score, 100)),
            description=description,
            severity=severity,
            detected=detected,
            details=details,
        )


class DuplicateAccountsFactor(RiskFactor):
    name = "duplicate_accounts"

    def evaluate(self, candidate, existing):
        others = [a for a in existing if a.user_id != candidate.user_id]
        duplicates = []
        score = 0

        email = (candidate.email or "").lower()
        match = next((a for a in others if email and (a.email or "").lower() == email), None)
        if match:
            duplicates.append({"type": "email", "user_id": match.user_id, "details": "Email already registered"})
            score += 25

        match = next((a for a in others if candidate.phone and a.phone == candidate.phone), None)
        if match:
            duplicates.append({"type": "phone", "user_id": match.user_id, "details": "Phone number already registered"})
            score += 20

        license_number = (candidate.license_number or "").upper()
        match = next(
            (a for a in others if license_number and (a.license_number or "").upper() == license_number),
            None,
        )
        if match:
            duplicates.append({"type": "nmc_number", "user_id": match.user_id, "details": "NMC number already registered"})
            score += 30

        best_score, best_user = 0.0, None
        for account in others:
            similarity = name_similarity(candidate.name, account.name)
            if similarity > best_score:
                best_score, best_user = similarity, account.user_id
        if best_score > NAME_SIMILARITY_THRESHOLD:
            duplicates.append({
                "type": "name_similarity",
                "user_id": best_user,
                "details": f"High name similarity ({round(best_score * 100)}%)",
            })
            score += 15

        detected = bool(duplicates)
        return self._result(
            score,
            f"Found {len(duplicates)} potential duplicate(s)",
            "high" if detected else "low",
            detected,
            count=len(duplicates),
            duplicates=duplicates,
        )


class DisposableEmailFactor(RiskFactor):
    name = "disposable_email"

    def evaluate(self, candidate, existing):
        domain = (candidate.email or "").rpartition("@")[2].lower()
        disposable = domain in DISPOSABLE_EMAIL_PROVIDERS
        return self._result(
            RISK_WEIGHTS[self.name] if disposable else 0,
            "Disposable email detected" if disposable else "Valid email provider",
            "medium" if disposable else "low",
            disposable,
            provider=domain,
        )


class PhoneValidationFactor(RiskFactor):
    name = "phone_validation"

    def evaluate(self, candidate, existing):
        phone = re.sub(r"[^0-9+]", "", candidate.phone or "")
        valid = any(p.match(phone) for p in VALID_PHONE_PATTERNS)

        carrier = "Unknown"
        if phone.startswith("+91"):
            prefix = phone[3:5]
            carrier = next((c for c, prefixes in CARRIER_PREFIXES.items() if prefix in prefixes), "Unknown")

        return self._result(
            0 if valid else RISK_WEIGHTS[self.name],
            "Valid phone number" if valid else "Invalid phone format",
            "low" if valid else "medium",
            not valid,
            valid=valid,
            carrier=carrier,
        )


class ConsultationFeeFactor(RiskFactor):
    name = "consultation_fee_validation"

    def evaluate(self, candidate, existing):
        low, high = CONSULTATION_FEE_RANGES.get(
            candidate.specialization or "", CONSULTATION_FEE_RANGES[DEFAULT_SPECIALIZATION]
        )
        if candidate.consultation_fee is None:
            return self._result(
                RISK_WEIGHTS[self.name], "Consultation fee not provided", "medium", True,
                expected_range=[low, high],
            )

        fee = candidate.consultation_fee
        within = low <= fee <= high
        if within:
            note = "Fee within expected range"
        elif fee < low:
            note = "Suspiciously low fee"
        else:
            note = "Unusually high fee"

        return self._result(
            0 if within else RISK_WEIGHTS[self.name],
            "Fee within expected range" if within else "Fee outside expected range",
            "low" if within else "medium",
            not within,
            within_range=within,
            expected_range=[low, high],
            fee=fee,
            risk=note,
        )


class LocationRiskFactor(RiskFactor):
    name = "location_risk"

    def evaluate(self, candidate, existing):
        city = (candidate.city or "").strip()
        flagged = city.lower() in {c.lower() for c in HIGH_RISK_LOCATIONS}
        return self._result(
            RISK_WEIGHTS[self.name] if flagged else 0,
            "High-risk location detected" if flagged else "Low-risk location",
            "medium" if flagged else "low",
            flagged,
            city=candidate.city,
            state=candidate.state,
        )


class DocumentAuthenticityFactor(RiskFactor):
    """Presence check; content authenticity is left to the reviewer."""

    name = "document_authenticity"

    def evaluate(self, candidate, existing):
        if not candidate.documents:
            return self._result(
                RISK_WEIGHTS[self.name], "No documents provided", "medium", True,
                analysis="Documents required for verification",
            )
        return self._result(
            0, "Documents provided for verification", "low", False,
            document_count=len(candidate.documents),
            analysis="Manual review required for document authenticity",
        )


class LicenseNumberFactor(RiskFactor):
    name = "nmc_validation"

    def evaluate(self, candidate, existing):
        if not candidate.license_number:
            return self._result(
                RISK_WEIGHTS[self.name], "NMC number not provided", "high", True,
                valid=False,
            )
        clean = re.sub(r"[^A-Z0-9]", "", candidate.license_number.upper())
        valid = 5 <= len(clean) <= 15
        return self._result(
            0 if valid else 20,
            "Valid NMC format" if valid else "Invalid NMC format",
            "low" if valid else "medium",
            not valid,
            valid=valid,
        )


class AgeExperienceFactor(RiskFactor):
    name = "age_experience_validation"

    def evaluate(self, candidate, existing):
        if candidate.date_of_birth is None or candidate.experience is None:
            return self._result(
                RISK_WEIGHTS[self.name], "Missing age or experience data", "medium", True,
                valid=False,
            )

        age = calculate_age(candidate.date_of_birth)
        experience = candidate.experience
        score = 0
        issues = []
        if age < MIN_PRACTICE_AGE:
            score += 20
            issues.append("Age too young for claimed experience")
        elif age > MAX_PRACTICE_AGE:
            score += 15
            issues.append("Age too high for active practice")
        if experience > age - MIN_PRACTICE_AGE:
            score += 25
            issues.append("Experience exceeds possible years")

        detected = score > 0
        return self._result(
            score,
            "Age-experience mismatch detected" if detected else "Age-experience consistent",
            "high" if detected else "low",
            detected,
            age=age,
            experience=experience,
            issues=issues,
        )


FACTORS: List[RiskFactor] = [
    DuplicateAccountsFactor(),
    DisposableEmailFactor(),
    PhoneValidationFactor(),
    ConsultationFeeFactor(),
    LocationRiskFactor(),
    DocumentAuthenticityFactor(),
    LicenseNumberFactor(),
    AgeExperienceFactor(),
]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class RiskAssessmentService:

    @staticmethod
    def evaluate_factor(
        factor: RiskFactor,
        candidate: RiskCandidate,
        existing: Sequence[ExistingAccount],
    ) -> RiskFactorResult:
        try:
            return factor.evaluate(candidate, existing)
        except Exception as e:
            logger.exception(f"Risk factor {factor.name} failed: {e}")
            return RiskFactorResult(
                factor=factor.name,
                score=RISK_WEIGHTS.get(factor.name, 30),
                description="Risk check failed; manual review required",
                severity="high",
                detected=True,
                details={"error": str(e)},
            )

    @staticmethod
    def recommendations(level: RiskLevel, factors: Iterable[RiskFactorResult]) -> List[str]:
        result = list(TIER_RECOMMENDATIONS[level])
        for factor in factors:
            if factor.score > 0 and factor.factor in FACTOR_RECOMMENDATIONS:
                result.append(FACTOR_RECOMMENDATIONS[factor.factor])
        return result

    @staticmethod
    def assess(
        candidate: RiskCandidate,
        existing: Optional[Sequence[ExistingAccount]] = None,
        factors: Optional[Sequence[RiskFactor]] = None,
    ) -> RiskAssessment:
        """Run every factor and aggregate into a tiered assessment."""
        existing = existing or []
        results = [
            RiskAssessmentService.evaluate_factor(f, candidate, existing)
            for f in (factors if factors is not None else FACTORS)
        ]

        total = max(0, min(sum(r.score for r in results), 100))
        level = risk_level_for(total)
        now = utcnow()

        return RiskAssessment(
            overall_risk_score=total,
            risk_level=level.value,
            risk_factors=results,
            assessed_at=now,
            next_assessment_due_at=now + timedelta(days=NEXT_ASSESSMENT_DAYS[level]),
            recommendations=RiskAssessmentService.recommendations(level, results),
            requires_manual_review=level in (RiskLevel.HIGH, RiskLevel.CRITICAL),
        )

    @staticmethod
    def failed_assessment(error: str) -> RiskAssessment:
        """Result used when the engine itself could not run."""
        now = utcnow()
        return RiskAssessment(
            overall_risk_score=100,
            risk_level=RiskLevel.CRITICAL.value,
            risk_factors=[
                RiskFactorResult(
                    factor="assessment_error",
                    score=100,
                    description="Risk assessment failed",
                    severity="critical",
                    detected=True,
                    details={"error": error},
                )
            ],
            assessed_at=now,
            next_assessment_due_at=now + timedelta(days=1),
            recommendations=list(TIER_RECOMMENDATIONS[RiskLevel.CRITICAL]),
            requires_manual_review=True,
            error=error,
        )

    @staticmethod
    def risk_stats() -> Dict:
        return {
            "risk_levels": {level.value: floor for level, floor in RISK_THRESHOLDS.items()},
            "risk_weights": dict(RISK_WEIGHTS),
            "next_assessment_days": {level.value: days for level, days in NEXT_ASSESSMENT_DAYS.items()},
            "consultation_fee_ranges": {k: {"min": v[0], "max": v[1]} for k, v in CONSULTATION_FEE_RANGES.items()},
            "high_risk_locations": list(HIGH_RISK_LOCATIONS),
            "disposable_email_providers": len(DISPOSABLE_EMAIL_PROVIDERS),
            "supported_specializations": len(CONSULTATION_FEE_RANGES),
            "factors": [f.name for f in FACTORS],
        }
