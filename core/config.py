"""Runtime settings, read from the environment (``DEPMEND_*``) or a .env file."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .advisories import OSV_URL
from .models import Severity


class PlannerSettings(BaseSettings):
    concurrency_limit: int = Field(default=8, ge=1)
    severity_floor: Severity = Field(default=Severity.LOW)
    allow_positional_overrides: bool = Field(default=False)
    partial_results: bool = Field(default=False)
    include_dev: bool = Field(default=True)
    lookup_timeout: float = Field(default=30.0, gt=0)
    osv_url: str = Field(default=OSV_URL)

    model_config = SettingsConfigDict(
        env_prefix="DEPMEND_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("severity_floor", mode="before")
    @classmethod
    def _parse_severity(cls, value):
        return Severity.parse(value)


def get_settings(**overrides) -> PlannerSettings:
    """Settings from the environment, with explicit values (e.g. CLI options) taking precedence."""
    updates = {key: value for key, value in overrides.items() if value is not None}
    return PlannerSettings(**updates)
