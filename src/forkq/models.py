"""Pydantic models for jobs, working-on records and failures."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(UTC)


class WorkerState(str, Enum):
    """Execution engine states."""

    IDLE = "idle"
    RESERVING = "reserving"
    DISPATCHING = "dispatching"
    RUNNING = "running"
    TERMINATING = "terminating"
    KILLED = "killed"
    REPORTING = "reporting"


class JobPayload(BaseModel):
    """Serialized job: the class name plus positional arguments."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    class_name: str | None = Field(default=None, alias="class")
    args: list[Any] = Field(default_factory=list)

    @field_validator("args", mode="before")
    @classmethod
    def coerce_args(cls, v: Any) -> Any:
        """Wrap a scalar argument; treat a missing value as no arguments."""
        if v is None:
            return []
        if isinstance(v, tuple):
            return list(v)
        if not isinstance(v, list):
            return [v]
        return v

    def to_dict(self) -> dict[str, Any]:
        """Store representation (`{"class": ..., "args": [...]}`)."""
        data = self.model_dump(mode="json", by_alias=True)
        if data.get("class") is None:
            data.pop("class", None)
        return data


class Job(BaseModel):
    """A reserved unit of work. Never mutated after creation.

    `run_at` is stamped when the job is reserved and carried into the
    worker's working-on record.
    """

    model_config = ConfigDict(frozen=True)

    queue: str
    payload: JobPayload
    run_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_store(
        cls, queue: str, payload: dict[str, Any], run_at: datetime | None = None
    ) -> "Job":
        fields: dict[str, Any] = {
            "queue": queue,
            "payload": JobPayload.model_validate(payload or {}),
        }
        if run_at is not None:
            fields["run_at"] = run_at
        return cls(**fields)

    @property
    def class_name(self) -> str | None:
        return self.payload.class_name

    @property
    def args(self) -> list[Any]:
        return list(self.payload.args)

    def __str__(self) -> str:
        return f"(Job{{{self.queue}}} | {self.class_name} | {self.payload.args!r})"


class WorkingOnRecord(BaseModel):
    """What a worker is executing right now."""

    queue: str
    payload: dict[str, Any]
    run_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def for_job(cls, job: Job) -> "WorkingOnRecord":
        return cls(queue=job.queue, payload=job.payload.to_dict(), run_at=job.run_at)

    def to_job(self) -> Job:
        return Job.from_store(self.queue, self.payload, self.run_at)


class FailureRecord(BaseModel):
    """A recorded job failure."""

    exception_kind: str
    message: str
    backtrace: list[str] = Field(default_factory=list)
    worker_id: str
    queue: str
    payload: dict[str, Any] = Field(default_factory=dict)
    failed_at: datetime = Field(default_factory=utcnow)
    retried_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json")
        if self.retried_at is None:
            data.pop("retried_at")
        return data
