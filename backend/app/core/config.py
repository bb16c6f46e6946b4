from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator, model_validator
from typing import Any, ClassVar
from decimal import Decimal
import json
from pathlib import Path
import os


_DEFAULT_FEE = {"base": "1.25", "percentage": "3.6", "cap": "8.00", "currency": "USD"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=True,
    )

    API_V1_STR: str = "/api/v1"

    # JWT verification (tokens are issued by the identity service)
    SECRET_KEY: str = "fallback_secret_for_dev_only"
    ALGORITHM: str = "HS256"

    # Database URL
    # Use an absolute path so running the app from different directories
    # (e.g., repo root or backend/) always resolves the same DB file.
    BASE_DIR: ClassVar[Path] = Path(__file__).resolve().parents[2]
    SQLALCHEMY_DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'booking.db'}"
    DB_POOL_SIZE: int = 6
    DB_MAX_OVERFLOW: int = 6
    DB_POOL_RECYCLE: int = 300
    DB_POOL_TIMEOUT: float = 5.0
    # SQLite busy timeout in milliseconds
    SQLITE_BUSY_TIMEOUT_MS: int = 60000

    # Redis connection URL for availability caching and job locks
    REDIS_URL: str = "redis://localhost:6379/0"

    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    FRONTEND_URL: str = "http://localhost:3000"

    DEFAULT_CURRENCY: str = "USD"
    LOG_LEVEL: str = "INFO"

    # Availability grid step
    SLOT_GRANULARITY_MINUTES: int = 15

    # Payment gateway: "simulated" keeps everything in-process, "paystack"
    # calls the Paystack transaction API.
    PAYMENT_PROVIDER: str = "simulated"
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_CALLBACK_URL: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    PAYMENT_GATEWAY_TIMEOUT: float = 10.0

    # Regional platform fee: base + percentage of the service price, capped.
    SERVICE_FEE_SCHEDULE: dict[str, dict[str, str]] = {
        "NA": dict(_DEFAULT_FEE),
        "EU": {**_DEFAULT_FEE, "currency": "EUR"},
        "GH": {**_DEFAULT_FEE, "currency": "GHS"},
        "NG": {**_DEFAULT_FEE, "currency": "NGN"},
    }

    # Booking lifecycle windows
    PAYMENT_REMINDER_AFTER_HOURS: int = 2
    DEPOSIT_DEADLINE_HOURS: int = 24
    PROVIDER_CONFIRMATION_DEADLINE_HOURS: int = 48
    REMINDER_LEAD_HOURS: int = 24
    NO_SHOW_GRACE_PERIOD_MINUTES: int = 30
    REVIEW_WINDOW_DAYS: int = 14
    RESCHEDULE_REQUEST_TTL_HOURS: int = 48

    # Reconciliation jobs
    JOB_BATCH_SIZE: int = 5
    JOB_TIME_BUDGET_SECONDS: int = 300
    JOB_FAILURE_ALERT_RATIO: float = 0.5
    JOB_INTERVAL_SECONDS: int = 900
    ENABLE_BACKGROUND_JOBS: bool = False
    OPS_TOKEN: str = ""

    @field_validator("CORS_ORIGINS", mode="before")
    def split_origins(cls, v: Any) -> list[str]:
        """Parse comma-separated or JSON list of origins from environment."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except json.JSONDecodeError:
                pass
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("PAYMENT_PROVIDER", "PAYSTACK_SECRET_KEY", "FRONTEND_URL", mode="before")
    def strip_whitespace(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("PAYMENT_PROVIDER")
    def normalize_provider(cls, v: str) -> str:
        v = v.lower()
        if v not in {"simulated", "paystack"}:
            raise ValueError(f"Unsupported PAYMENT_PROVIDER {v!r}")
        return v

    @model_validator(mode="after")
    def check_job_bounds(self) -> "Settings":
        if self.JOB_BATCH_SIZE < 1:
            self.JOB_BATCH_SIZE = 1
        if not 0 < self.JOB_FAILURE_ALERT_RATIO <= 1:
            self.JOB_FAILURE_ALERT_RATIO = 0.5
        return self

    def service_fee_for_region(self, region_code: str | None) -> dict[str, Decimal | str]:
        """Return the fee schedule for ``region_code`` with Decimal values.

        Unknown regions fall back to the NA schedule.
        """
        raw = self.SERVICE_FEE_SCHEDULE.get((region_code or "").upper()) or self.SERVICE_FEE_SCHEDULE.get("NA") or _DEFAULT_FEE
        return {
            "base": Decimal(str(raw.get("base", "0"))),
            "percentage": Decimal(str(raw.get("percentage", "0"))),
            "cap": Decimal(str(raw.get("cap", "0"))),
            "currency": str(raw.get("currency") or self.DEFAULT_CURRENCY),
        }


def load_settings() -> "Settings":
    return Settings(_env_file=os.getenv("ENV_FILE", str(Path(__file__).resolve().parents[3] / ".env")))


settings = load_settings()


def _redis_url() -> str:
    env_url = os.getenv("REDIS_URL")
    if env_url:
        return env_url
    return getattr(settings, "REDIS_URL", "redis://localhost:6379/0")


REDIS_URL = _redis_url()
