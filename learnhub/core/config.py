# learnhub/core/config.py - Centralized settings management using Pydantic
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, EmailStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation and type safety"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application Environment
    ENV: str = Field(default="dev", description="Environment: dev, staging, prod")
    DEBUG: bool = Field(default=False, description="Debug mode")
    API_TITLE: str = Field(default="LearnHub Enrollment API", description="API title")
    API_VERSION: str = Field(default="1.0.0", description="API version")

    # Database Configuration
    DATABASE_URL: str = Field(default="sqlite:///./learnhub.db", description="Database connection URL")
    DATABASE_ECHO: bool = Field(default=False, description="Echo SQL queries")
    DATABASE_POOL_SIZE: int = Field(default=5, ge=1, le=100, description="Connection pool size")
    DATABASE_MAX_OVERFLOW: int = Field(default=10, ge=0, le=100, description="Max overflow connections")
    DATABASE_POOL_TIMEOUT: int = Field(default=30, ge=1, le=300, description="Pool timeout in seconds")
    DATABASE_POOL_RECYCLE: int = Field(default=3600, ge=300, description="Pool recycle time in seconds")

    # JWT Configuration (tokens are issued by the auth service, only decoded here)
    JWT_SECRET: str = Field(default="dev-only-secret-change-me-0123456789abcdef", description="JWT signing secret")
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60, ge=1, le=10080, description="Access token expiry")
    JWT_ISSUER: str = Field(default="learnhub", description="JWT issuer")
    JWT_AUDIENCE: str = Field(default="learnhub-users", description="JWT audience")

    # CORS Configuration
    CORS_ORIGINS: List[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="CORS allowed origins"
    )

    # Payment Gateway (Razorpay) Configuration
    RAZORPAY_KEY_ID: Optional[str] = Field(default=None, description="Razorpay key id")
    RAZORPAY_KEY_SECRET: Optional[str] = Field(default=None, description="Razorpay key secret")
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = Field(default=None, description="Razorpay webhook secret")
    GATEWAY_BASE_URL: str = Field(default="https://api.razorpay.com/v1", description="Gateway REST base URL")
    GATEWAY_TIMEOUT_SECONDS: float = Field(default=15.0, gt=0, le=120, description="Gateway request timeout")
    GATEWAY_MAX_RETRIES: int = Field(default=3, ge=0, le=10, description="Max retry attempts for the gateway")
    GATEWAY_RETRY_DELAY: float = Field(default=0.5, ge=0.0, le=10.0, description="Initial retry delay in seconds")

    # Email Configuration (SMTP)
    SMTP_HOST: Optional[str] = Field(default=None, description="SMTP server host")
    SMTP_PORT: int = Field(default=587, ge=1, le=65535, description="SMTP server port")
    SMTP_USER: Optional[str] = Field(default=None, description="SMTP username")
    SMTP_PASSWORD: Optional[str] = Field(default=None, description="SMTP password")
    SMTP_FROM_EMAIL: Optional[EmailStr] = Field(default=None, description="From email address")
    SMTP_FROM_NAME: str = Field(default="LearnHub", description="From name")
    SMTP_USE_TLS: bool = Field(default=True, description="Use TLS for SMTP")
    SMTP_TIMEOUT_SECONDS: int = Field(default=10, ge=1, le=120, description="SMTP timeout")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Logging format string"
    )

    # Enrollment Policy
    DEFAULT_ACCESS_DURATION_DAYS: int = Field(default=365, ge=1, description="Individual enrollment access duration")
    BATCH_ACCESS_GRACE_DAYS: int = Field(default=30, ge=0, description="Access kept after a batch ends")
    DEFAULT_CURRENCY: str = Field(default="INR", min_length=3, max_length=3, description="Default pricing currency")

    # EMI Policy
    EMI_DEFAULT_CADENCE_DAYS: int = Field(default=30, ge=1, le=366, description="Days between installments")
    EMI_GRACE_PERIOD_DAYS: int = Field(default=5, ge=0, le=90, description="Days after due date before overdue")
    EMI_MAX_INSTALLMENTS: int = Field(default=24, ge=1, le=120, description="Max installments per plan")
    LATE_FEE_MODE: str = Field(default="none", description="Late fee policy: none, fixed, percentage")
    LATE_FEE_VALUE: Decimal = Field(default=Decimal("0"), ge=0, description="Fixed amount or percentage")
    OVERDUE_BLOCKS_ALL_ACCESS: bool = Field(default=True, description="Overdue installment blocks all content")
    PAYMENT_MAX_RETRIES: int = Field(default=3, ge=1, le=10, description="Retries on concurrent enrollment updates")

    # Analytics
    CONSISTENCY_THRESHOLDS: str = Field(default="95,85,70", description="excellent,good,fair score thresholds")

    @field_validator("ENV")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed_envs = ["dev", "development", "test", "staging", "prod", "production"]
        if v.lower() not in allowed_envs:
            raise ValueError(f"ENV must be one of: {allowed_envs}")
        return v.lower()

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        allowed_prefixes = (
            "postgresql://",
            "postgresql+psycopg2://",
            "postgresql+psycopg://",
            "sqlite://",
        )
        if not v.startswith(allowed_prefixes):
            raise ValueError("DATABASE_URL must be a postgresql or sqlite connection string")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed_levels}")
        return v.upper()

    @field_validator("LATE_FEE_MODE")
    @classmethod
    def validate_late_fee_mode(cls, v: str) -> str:
        if v.lower() not in ("none", "fixed", "percentage"):
            raise ValueError("LATE_FEE_MODE must be one of: none, fixed, percentage")
        return v.lower()

    @field_validator("CONSISTENCY_THRESHOLDS")
    @classmethod
    def validate_consistency_thresholds(cls, v: str) -> str:
        parts = [p.strip() for p in v.split(",") if p.strip()]
        if len(parts) != 3:
            raise ValueError("CONSISTENCY_THRESHOLDS must have three values: excellent,good,fair")
        values = [float(p) for p in parts]
        if not (100 >= values[0] >= values[1] >= values[2] >= 0):
            raise ValueError("CONSISTENCY_THRESHOLDS must be descending and within 0-100")
        return ",".join(parts)

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.ENV in ["dev", "development", "test"]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode"""
        return self.ENV in ["prod", "production"]

    @property
    def gateway_configured(self) -> bool:
        return bool(self.RAZORPAY_KEY_ID and self.RAZORPAY_KEY_SECRET)


@dataclass(frozen=True)
class ConsistencyThresholds:
    """Minimum success percentages for each consistency rating"""
    excellent: float = 95.0
    good: float = 85.0
    fair: float = 70.0

    @classmethod
    def parse(cls, raw: str) -> "ConsistencyThresholds":
        excellent, good, fair = (float(p) for p in raw.split(","))
        return cls(excellent=excellent, good=good, fair=fair)


@dataclass(frozen=True)
class EnrollmentPolicy:
    """Policy knobs consumed by the enrollment and payment services"""
    access_duration_days: int = 365
    batch_access_grace_days: int = 30
    default_currency: str = "INR"
    emi_cadence_days: int = 30
    emi_grace_period_days: int = 5
    emi_max_installments: int = 24
    late_fee_mode: str = "none"
    late_fee_value: Decimal = Decimal("0")
    overdue_blocks_all_access: bool = True
    payment_max_retries: int = 3
    consistency_thresholds: ConsistencyThresholds = ConsistencyThresholds()


def get_enrollment_policy() -> EnrollmentPolicy:
    """Build the policy object from the current settings"""
    return EnrollmentPolicy(
        access_duration_days=settings.DEFAULT_ACCESS_DURATION_DAYS,
        batch_access_grace_days=settings.BATCH_ACCESS_GRACE_DAYS,
        default_currency=settings.DEFAULT_CURRENCY,
        emi_cadence_days=settings.EMI_DEFAULT_CADENCE_DAYS,
        emi_grace_period_days=settings.EMI_GRACE_PERIOD_DAYS,
        emi_max_installments=settings.EMI_MAX_INSTALLMENTS,
        late_fee_mode=settings.LATE_FEE_MODE,
        late_fee_value=settings.LATE_FEE_VALUE,
        overdue_blocks_all_access=settings.OVERDUE_BLOCKS_ALL_ACCESS,
        payment_max_retries=settings.PAYMENT_MAX_RETRIES,
        consistency_thresholds=ConsistencyThresholds.parse(settings.CONSISTENCY_THRESHOLDS),
    )


# Create settings instance with validation
try:
    settings = Settings()
except Exception as e:
    print(f"Configuration error: {e}")
    print("Please check your .env file and environment variables")
    raise


def validate_critical_settings():
    """Validate critical settings that must be present"""
    critical_errors = []

    if settings.is_production:
        if settings.JWT_SECRET.startswith("dev-only"):
            critical_errors.append("JWT_SECRET must be set to a secure value in production")
        if settings.DATABASE_URL.startswith("sqlite"):
            critical_errors.append("DATABASE_URL must point to PostgreSQL in production")
        if not settings.gateway_configured:
            critical_errors.append("RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET are required in production")

    if len(settings.JWT_SECRET) < 32:
        critical_errors.append("JWT_SECRET must be at least 32 characters long")

    if not settings.SMTP_HOST:
        print("WARNING: SMTP is not configured. Enrollment and payment emails will not be sent.")

    if critical_errors:
        error_msg = "Critical configuration errors:\n" + "\n".join(f"  - {error}" for error in critical_errors)
        raise ValueError(error_msg)


# Validate on import
validate_critical_settings()

__all__ = ["settings", "Settings", "EnrollmentPolicy", "ConsistencyThresholds", "get_enrollment_policy"]
