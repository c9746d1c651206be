"""Strict environment validation for worker configuration."""

from typing import Annotated, Any

from pydantic import Field, PostgresDsn, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class WorkerConfig(BaseSettings):
    """Worker configuration with strict validation.

    Every field can be set through a `FORKQ_`-prefixed environment variable
    (e.g. `FORKQ_QUEUES=critical,high,low`). Fails fast on invalid values.
    """

    model_config = SettingsConfigDict(
        env_prefix="FORKQ_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="forbid",  # Reject unknown fields to catch typos
    )

    # Queues to poll, in priority order; "*" expands to every known queue
    queues: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Ordered queue names (comma-separated in the environment)",
    )

    # Polling configuration
    interval: float = Field(
        default=5.0,
        ge=0,
        le=300,
        description="Seconds to sleep after an empty poll (0 = drain once and stop)",
    )

    # Shutdown configuration
    term_timeout: float = Field(
        default=4.0,
        gt=0,
        le=3600,
        description="Grace period between a forwarded SIGTERM and SIGKILL",
    )

    term_child: bool = Field(
        default=False,
        description="Forward SIGTERM/SIGINT to the running job's child process",
    )

    fork_per_job: bool = Field(
        default=True,
        description="Run each job in a forked child process",
    )

    # Logging
    verbose: bool = False
    very_verbose: bool = False
    json_logs: bool = False

    # Storage (optional; in-memory store is used when unset)
    database_url: PostgresDsn | None = Field(
        default=None,
        description="PostgreSQL connection string for the shared store",
    )

    # Failure notifications
    failure_webhook_url: str | None = Field(
        default=None,
        description="URL that receives a JSON POST for every recorded failure",
    )

    failure_webhook_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="Timeout for failure webhook deliveries",
    )

    @field_validator("queues", mode="before")
    @classmethod
    def split_queues(cls, v: Any) -> Any:
        """Accept a comma-separated string and trim every name."""
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple)):
            return [str(name).strip() for name in v if str(name).strip()]
        return v

    @field_validator("failure_webhook_url")
    @classmethod
    def validate_webhook_url(cls, v: str | None) -> str | None:
        """Only http(s) targets are accepted."""
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("failure_webhook_url must be an http(s) URL")
        return v

    @property
    def database_url_str(self) -> str | None:
        """Get database URL as string (for psycopg)."""
        return str(self.database_url) if self.database_url else None
