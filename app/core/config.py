import os
from typing import Optional, Dict
from dotenv import load_dotenv

load_dotenv()


# Issuing authorities the license registry can route to. The env prefix is
# used to look up `<PREFIX>_API_URL` / `<PREFIX>_API_KEY`.
LICENSE_AUTHORITY_ENV_PREFIXES: Dict[str, str] = {
    "NMC": "NMC",
    "MCI": "MCI",
    "MAHARASHTRA": "MMC",
    "KARNATAKA": "KMC",
    "TAMIL_NADU": "TNMC",
    "KERALA": "KEMC",
    "ANDHRA_PRADESH": "APMC",
    "TELANGANA": "TSMC",
    "WEST_BENGAL": "WBMC",
    "GUJARAT": "GMC",
    "RAJASTHAN": "RMC",
    "MADHYA_PRADESH": "MPMC",
    "UTTAR_PRADESH": "UPMC",
    "BIHAR": "BMC",
    "ODISHA": "OMC",
    "ASSAM": "AMC",
    "JHARKHAND": "JMC",
    "CHHATTISGARH": "CGMC",
    "HARYANA": "HMC",
    "PUNJAB": "PMC",
    "HIMACHAL_PRADESH": "HPMC",
    "UTTARAKHAND": "UKMC",
    "DELHI": "DMC",
}


class Settings:
    ENV: str = os.getenv("ENV", "local")
    APP_NAME: str = os.getenv("APP_NAME", "HealthQ")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
    DATABASE_ECHO: bool = os.getenv("DATABASE_ECHO", "False").lower() == "true"
    DATABASE_POOL_SIZE: int = int(os.getenv("DATABASE_POOL_SIZE", 20))
    DATABASE_MAX_OVERFLOW: int = int(os.getenv("DATABASE_MAX_OVERFLOW", 10))

    # JWT / Security
    SECRET_KEY: str = os.getenv("SECRET_KEY")
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 15))

    # CORS
    BACKEND_CORS_ORIGINS: Optional[str] = os.getenv("BACKEND_CORS_ORIGINS")

    # Rate Limiting (inbound, per client IP)
    RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "True").lower() == "true"
    RATE_LIMIT_REQUESTS: int = int(os.getenv("RATE_LIMIT_REQUESTS", 100))
    RATE_LIMIT_PERIOD_SECONDS: int = int(os.getenv("RATE_LIMIT_PERIOD_SECONDS", 60))

    # Redis / Celery
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CELERY_BROKER_URL: str = os.getenv("CELERY_BROKER_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0"))
    CELERY_RESULT_BACKEND: Optional[str] = os.getenv("CELERY_RESULT_BACKEND")

    # Realtime events published by workers, relayed to sockets by the API
    EVENTS_CHANNEL: str = os.getenv("EVENTS_CHANNEL", "healthq:events")
    EVENTS_RELAY_ENABLED: bool = os.getenv("EVENTS_RELAY_ENABLED", "True").lower() == "true"

    # License registry (outbound, per issuing authority)
    LICENSE_API_TIMEOUT_SECONDS: float = float(os.getenv("LICENSE_API_TIMEOUT_SECONDS", 10))
    LICENSE_API_REQUESTS_PER_MINUTE: int = int(os.getenv("LICENSE_API_REQUESTS_PER_MINUTE", 60))

    # Verification pipeline
    AUTOMATED_VERIFICATION_DELAY_SECONDS: int = int(os.getenv("AUTOMATED_VERIFICATION_DELAY_SECONDS", 5))
    AUTOMATED_VERIFICATION_TIMEOUT_MINUTES: int = int(os.getenv("AUTOMATED_VERIFICATION_TIMEOUT_MINUTES", 30))
    AUTO_APPROVAL_ENABLED: bool = os.getenv("AUTO_APPROVAL_ENABLED", "True").lower() == "true"
    AUTO_APPROVAL_MAX_RISK_SCORE: int = int(os.getenv("AUTO_APPROVAL_MAX_RISK_SCORE", 30))
    ACCOUNT_ACTIVATION_MAX_ATTEMPTS: int = int(os.getenv("ACCOUNT_ACTIVATION_MAX_ATTEMPTS", 3))
    ACCOUNT_ACTIVATION_RETRY_SECONDS: int = int(os.getenv("ACCOUNT_ACTIVATION_RETRY_SECONDS", 60))
    APPEAL_REASON_MIN_LENGTH: int = int(os.getenv("APPEAL_REASON_MIN_LENGTH", 10))
    APPEAL_REASON_MAX_LENGTH: int = int(os.getenv("APPEAL_REASON_MAX_LENGTH", 500))

    # Queue
    DEFAULT_AVG_CONSULTATION_MINUTES: int = int(os.getenv("DEFAULT_AVG_CONSULTATION_MINUTES", 15))
    DEFAULT_MAX_QUEUE_SIZE: int = int(os.getenv("DEFAULT_MAX_QUEUE_SIZE", 50))
    QUEUE_CACHE_TTL_SECONDS: int = int(os.getenv("QUEUE_CACHE_TTL_SECONDS", 30))

    def license_authority_credentials(self, authority: str) -> Dict[str, Optional[str]]:
        """Return the base URL and API key configured for an issuing authority."""
        prefix = LICENSE_AUTHORITY_ENV_PREFIXES.get(authority, authority)
        return {
            "base_url": os.getenv(f"{prefix}_API_URL"),
            "api_key": os.getenv(f"{prefix}_API_KEY"),
        }


settings = Settings()
