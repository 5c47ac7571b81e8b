"""Engine configuration loaded from environment variables."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rde_engine.errors import ErrorKind, fail
from rde_engine.retry import RetryConfig

logger = logging.getLogger(__name__)


class RetryBudget(BaseModel):
    """How long to wait for the logs of an update to become queryable."""

    retries: int = Field(default=20, ge=1)
    wait_seconds: float = Field(default=1.0, ge=0.0)

    @property
    def total_seconds(self) -> float:
        return self.retries * self.wait_seconds


# Measured latencies before update logs can be queried, per artifact type.
# Tuning values, expected to change.
DEFAULT_LOG_RETRY_BUDGETS: dict[str, RetryBudget] = {
    "dispatcher-config": RetryBudget(retries=30, wait_seconds=1.0),
    "frontend": RetryBudget(retries=90, wait_seconds=1.0),
}


class Settings(BaseSettings):
    """Settings loaded from environment variables with the RDE_ prefix."""

    model_config = SettingsConfigDict(
        env_prefix="RDE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = False
    structured_logging: bool = False

    # Target environment
    cloud_manager_url: str = "https://cloudmanager.adobe.io"
    org_id: str | None = None
    program_id: str | None = None
    environment_id: str | None = None

    # Credentials
    access_token: SecretStr | None = None
    api_key: str | None = None

    # HTTP
    request_timeout: float = 30.0
    get_retry_interval: float = 1.0
    get_retry_attempts: int = 5

    # Server-driven retry; no iteration cap unless configured
    retry_after_max_delay: float = 5.0
    retry_after_max_iterations: int | None = None

    # Snapshot progress and readiness gates; unbounded unless configured
    snapshot_progress_interval: float = 5.0
    snapshot_progress_max_attempts: int | None = None
    readiness_interval: float = 10.0
    readiness_max_attempts: int | None = None

    # Update log retrieval
    log_retry_budgets: dict[str, RetryBudget] = Field(
        default_factory=lambda: dict(DEFAULT_LOG_RETRY_BUDGETS),
    )
    default_log_retry_budget: RetryBudget = Field(default_factory=RetryBudget)

    # Dev console URL cache
    dev_console_cache_ttl_hours: int = 24

    @field_validator("access_token", mode="before")
    @classmethod
    def mask_token_in_repr(cls, v: str | None) -> SecretStr | None:
        if v is None or v == "":
            return None
        if isinstance(v, SecretStr):
            return v
        return SecretStr(v)

    @property
    def get_retry(self) -> RetryConfig:
        return RetryConfig(interval=self.get_retry_interval, max_attempts=self.get_retry_attempts)

    def log_retry_budget_for(self, change_type: str | None) -> RetryBudget:
        """Return the log retry budget for *change_type*, or the default."""
        if change_type and change_type in self.log_retry_budgets:
            return self.log_retry_budgets[change_type]
        return self.default_log_retry_budget

    def is_authenticated(self) -> bool:
        return self.access_token is not None


def load_settings(**overrides: object) -> Settings:
    """Load settings from environment, with optional overrides.

    Malformed values are reported as a configuration failure naming the
    offending fields.
    """
    try:
        settings = Settings(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        fields = ", ".join(".".join(str(part) for part in err["loc"]) or "settings" for err in exc.errors())
        raise fail(ErrorKind.INVALID_CONFIGURATION, fields, detail=str(exc)) from exc

    if settings.debug:
        logger.info("Loaded settings for program %s environment %s", settings.program_id, settings.environment_id)

    return settings
