"""Medical license registry adapter.

Routes a license number to its issuing council, enforces a per-council
request budget, and calls the council's verification endpoint. `verify`
never raises: transport or configuration problems come back as a failure
result tagged ``manual_review_required``. Rate-limit breaches surface as
`RateLimited` only through `check_rate_limit` / `verify(..., raise_on_rate_limit=True)`.
"""
import logging
import re
import threading
import time
from collections import defaultdict, deque
from datetime import date
from typing import Any, Callable, Deque, Dict, Optional

import httpx

from app.core.config import settings
from app.utils.errors import RateLimited
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60

NATIONAL_COUNCILS = {
    "NMC": {"name": "National Medical Commission", "verify_path": "/verify-license", "confidence": 95},
    "MCI": {"name": "Medical Council of India (Legacy)", "verify_path": "/verify", "confidence": 90},
}

STATE_COUNCIL_NAMES = {
    "MAHARASHTRA": "Maharashtra Medical Council",
    "KARNATAKA": "Karnataka Medical Council",
    "TAMIL_NADU": "Tamil Nadu Medical Council",
    "KERALA": "Kerala Medical Council",
    "ANDHRA_PRADESH": "Andhra Pradesh Medical Council",
    "TELANGANA": "Telangana State Medical Council",
    "WEST_BENGAL": "West Bengal Medical Council",
    "GUJARAT": "Gujarat Medical Council",
    "RAJASTHAN": "Rajasthan Medical Council",
    "MADHYA_PRADESH": "Madhya Pradesh Medical Council",
    "UTTAR_PRADESH": "Uttar Pradesh Medical Council",
    "BIHAR": "Bihar Medical Council",
    "ODISHA": "Odisha Medical Council",
    "ASSAM": "Assam Medical Council",
    "JHARKHAND": "Jharkhand Medical Council",
    "CHHATTISGARH": "Chhattisgarh Medical Council",
    "HARYANA": "Haryana Medical Council",
    "PUNJAB": "Punjab Medical Council",
    "HIMACHAL_PRADESH": "Himachal Pradesh Medical Council",
    "UTTARAKHAND": "Uttarakhand Medical Council",
    "DELHI": "Delhi Medical Council",
}
STATE_COUNCIL_CONFIDENCE = 85

# Checked in order
STATE_PREFIXES = (
    ("MAH", "MAHARASHTRA"),
    ("KAR", "KARNATAKA"),
    ("TAM", "TAMIL_NADU"),
    ("KER", "KERALA"),
    ("AP", "ANDHRA_PRADESH"),
    ("TS", "TELANGANA"),
    ("WB", "WEST_BENGAL"),
    ("GUJ", "GUJARAT"),
    ("RAJ", "RAJASTHAN"),
    ("MP", "MADHYA_PRADESH"),
    ("UP", "UTTAR_PRADESH"),
    ("BIH", "BIHAR"),
    ("ODI", "ODISHA"),
    ("ASS", "ASSAM"),
    ("JHA", "JHARKHAND"),
    ("CG", "CHHATTISGARH"),
    ("HAR", "HARYANA"),
    ("PUN", "PUNJAB"),
    ("HP", "HIMACHAL_PRADESH"),
    ("UK", "UTTARAKHAND"),
    ("DEL", "DELHI"),
)

NMC_FORMAT = re.compile(r"^NMC[A-Z0-9]{10}$")
MCI_FORMAT = re.compile(r"^\d{5,6}$")
STATE_FORMATS = {
    prefix: (council, re.compile(rf"^{prefix}[A-Z0-9]{{8,10}}$"))
    for prefix, council in STATE_PREFIXES
}


class LicenseVerificationError(Exception):
    """Raised internally when a council lookup cannot produce a confirmation."""

    def __init__(self, message: str, code: str = "verification_failed"):
        super().__init__(message)
        self.code = code


def clean_license_number(license_number: str) -> str:
    return re.sub(r"[^A-Z0-9]", "", (license_number or "").upper())


def council_name(authority: str) -> str:
    if authority in NATIONAL_COUNCILS:
        return NATIONAL_COUNCILS[authority]["name"]
    return STATE_COUNCIL_NAMES.get(authority, "Unknown Council")


class LicenseRegistryService:
    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        requests_per_minute: Optional[int] = None,
        credentials: Optional[Callable[[str], Dict[str, Optional[str]]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self.requests_per_minute = requests_per_minute or settings.LICENSE_API_REQUESTS_PER_MINUTE
        self._credentials = credentials or settings.license_authority_credentials
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Routing and format
    # ------------------------------------------------------------------
    @staticmethod
    def determine_authority(license_number: str) -> str:
        """Council to query. A well-formed number routes to the council its format names."""
        resolved = LicenseRegistryService.validate_format(license_number)["authority"]
        if resolved:
            return resolved

        clean = clean_license_number(license_number)
        if clean.startswith("NMC"):
            return "NMC"
        for prefix, council in STATE_PREFIXES:
            if clean.startswith(prefix):
                return council
        return "NMC"

    @staticmethod
    def validate_format(license_number: str) -> Dict[str, Any]:
        """Pure syntactic check, no network and no rate-limit slot."""
        clean = clean_license_number(license_number)
        if NMC_FORMAT.match(clean):
            return {"valid": True, "format": "NMC", "authority": "NMC"}
        if MCI_FORMAT.match(clean):
            return {"valid": True, "format": "MCI", "authority": "MCI"}
        for prefix, (council, pattern) in STATE_FORMATS.items():
            if pattern.match(clean):
                return {"valid": True, "format": "STATE", "authority": council}
        return {"valid": False, "format": "UNKNOWN", "authority": None}

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------
    def check_rate_limit(self, authority: str) -> None:
        """Consume one slot of the authority's sliding one-minute window."""
        now = self._clock()
        with self._lock:
            window = self._windows[authority]
            while window and window[0] <= now - RATE_LIMIT_WINDOW_SECONDS:
                window.popleft()
            if len(window) >= self.requests_per_minute:
                retry_after = max(1, int(window[0] + RATE_LIMIT_WINDOW_SECONDS - now) + 1)
                logger.warning(f"License registry rate limit hit for {authority}; retry in {retry_after}s")
                raise RateLimited(authority, retry_after)
            window.append(now)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------
    def verify(
        self,
        license_number: str,
        name: Optional[str] = None,
        dob: Optional[date] = None,
        raise_on_rate_limit: bool = False,
    ) -> Dict[str, Any]:
        authority = self.determine_authority(license_number)
        base = {
            "authority": authority,
            "authority_name": council_name(authority),
            "license_number": license_number,
            "checked_at": utcnow().isoformat(),
        }

        try:
            self.check_rate_limit(authority)
        except RateLimited as e:
            if raise_on_rate_limit:
                raise
            return {
                **base,
                "success": False,
                "error": e.message,
                "error_code": "rate_limited",
                "retry_after": e.extra.get("retry_after"),
                "source": "rate_limited",
            }

        try:
            result = self._call_authority(authority, license_number, name, dob)
        except LicenseVerificationError as e:
            logger.warning(f"License verification degraded for {license_number} ({authority}): {e}")
            return self._manual_review(base, str(e), e.code)
        except httpx.TimeoutException as e:
            logger.warning(f"License registry timeout for {authority}: {e}")
            return self._manual_review(base, "License registry timed out", "timeout")
        except httpx.HTTPError as e:
            logger.warning(f"License registry transport error for {authority}: {e}")
            return self._manual_review(base, f"License registry unavailable: {e}", "transport_error")
        except Exception as e:
            logger.exception(f"Unexpected license registry error for {authority}: {e}")
            return self._manual_review(base, str(e), "unexpected_error")

        logger.info(f"License {license_number} confirmed by {authority}")
        return {**base, "success": True, "result": result, "source": "api"}

    @staticmethod
    def _manual_review(base: Dict[str, Any], error: str, code: str) -> Dict[str, Any]:
        return {
            **base,
            "success": False,
            "error": error,
            "error_code": code,
            "source": "manual_review_required",
            "fallback_message": "Unable to verify automatically. Manual verification required.",
        }

    def _call_authority(
        self,
        authority: str,
        license_number: str,
        name: Optional[str],
        dob: Optional[date],
    ) -> Dict[str, Any]:
        creds = self._credentials(authority)
        api_key = creds.get("api_key")
        base_url = creds.get("base_url")
        if not api_key:
            raise LicenseVerificationError(f"{authority} API key not configured", "not_configured")
        if not base_url:
            raise LicenseVerificationError(f"{authority} API URL not configured", "not_configured")

        council = NATIONAL_COUNCILS.get(authority)
        path = council["verify_path"] if council else "/verify"
        default_confidence = council["confidence"] if council else STATE_COUNCIL_CONFIDENCE

        payload = {
            "licenseNumber": license_number,
            "doctorName": name,
            "dateOfBirth": dob.isoformat() if dob else None,
        }
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

        if self._client is not None:
            response = self._client.post(f"{base_url.rstrip('/')}{path}", json=payload, headers=headers)
        else:
            with httpx.Client(timeout=settings.LICENSE_API_TIMEOUT_SECONDS) as client:
                response = client.post(f"{base_url.rstrip('/')}{path}", json=payload, headers=headers)

        response.raise_for_status()
        data = response.json()
        if not data.get("success"):
            raise LicenseVerificationError(data.get("message") or "Verification failed", "not_confirmed")

        return {
            "name": data.get("doctorName"),
            "registration_date": data.get("registrationDate"),
            "expiry_date": data.get("expiryDate"),
            "specialization": data.get("specialization"),
            "status": data.get("status"),
            "council_name": council_name(authority),
            "confidence": data.get("confidence") or default_confidence,
        }

    def stats(self) -> Dict[str, Any]:
        return {
            "total_councils": len(NATIONAL_COUNCILS) + len(STATE_COUNCIL_NAMES),
            "national_councils": list(NATIONAL_COUNCILS),
            "supported_states": list(STATE_COUNCIL_NAMES),
            "rate_limit_per_minute": self.requests_per_minute,
        }


license_registry = LicenseRegistryService()
