import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    env: str = Field(default="dev", description="Deployment environment")
    app_name: str = "Payroll Computation Engine"
    log_level: str = "INFO"
    data_path: Path = Field(default=Path("data/payroll.json"), description="JSON store used by the CLI")

    default_levy_rate: Decimal = Field(default=Decimal("0.03"), description="Levy on PAYE when a tenant sets none")
    default_annual_leave_days: Decimal = Decimal("22")

    # Bracket validation at configuration-write time
    max_bracket_gap: Decimal = Decimal("0.01")
    continuity_tolerance: Decimal = Decimal("0.50")
    strict_bracket_continuity: bool = False

    max_workers: int = Field(default=1, ge=1, description="Threads used to compute a batch")

    sentry_dsn: str | None = Field(default=None, description="Sentry DSN for error monitoring")
    otlp_endpoint: str | None = Field(default=None, description="OTLP endpoint for traces/metrics")

    model_config = SettingsConfigDict(env_prefix="PAYROLL_", extra="ignore")

    @field_validator("default_levy_rate")
    @classmethod
    def levy_rate_not_negative(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("default_levy_rate must not be negative")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, value: str) -> str:
        return value.upper() if isinstance(value, str) else value


@lru_cache
def get_settings() -> Settings:
    return Settings(_env_file=get_settings_env_file())


def get_settings_env_file() -> str | None:
    """Resolve environment-specific env file if it exists."""
    env = os.getenv("PAYROLL_ENV", "dev")
    env_file = BASE_DIR / f".env.{env}"
    default_file = BASE_DIR / ".env"
    if env_file.exists():
        return str(env_file)
    if default_file.exists():
        return str(default_file)
    return None
