"""Error taxonomy for the worker engine."""

import traceback
from typing import Any


class ForkqError(Exception):
    """Base exception for worker engine errors.

    Attributes:
        message: Human-readable error message
        details: Additional error context
    """

    def __init__(self, message: str = "", details: dict[str, Any] | None = None) -> None:
        """Initialize error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """String representation of error."""
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message

    def __reduce__(self) -> tuple[Any, ...]:
        return (self.__class__, (self.message, self.details))


class ConfigurationError(ForkqError):
    """Worker configuration is invalid (fatal at construction)."""


class NoQueueError(ConfigurationError):
    """Worker was constructed without any queue."""

    def __init__(
        self,
        message: str = "Please give each worker at least one queue.",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)


class StoreError(ForkqError):
    """Shared store operation failed."""


class MissingCapabilityError(ForkqError):
    """Job class is unknown or has no callable `perform`."""


class DirtyExit(ForkqError):
    """Worker or child process went away while a job was in flight."""

    def __init__(
        self, message: str = "Job was not completed", details: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, details)


class PruneDeadWorkerDirtyExit(DirtyExit):
    """Dirty exit discovered while pruning a dead worker at startup."""

    def __init__(self, worker_id: str = "", details: dict[str, Any] | None = None) -> None:
        self.worker_id = worker_id
        super().__init__(f"Worker {worker_id} did not gracefully exit while processing job", details)

    def __reduce__(self) -> tuple[Any, ...]:
        return (self.__class__, (self.worker_id, self.details))


class JobExecutionFailure(ForkqError):
    """Job failure reported by a child whose exception could not be transferred.

    Carries the original exception kind, message and backtrace.
    """

    def __init__(
        self,
        message: str = "",
        details: dict[str, Any] | None = None,
        kind: str = "Exception",
        backtrace: list[str] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.kind = kind
        self.backtrace = backtrace or []

    def __reduce__(self) -> tuple[Any, ...]:
        return (self.__class__, (self.message, self.details, self.kind, self.backtrace))

    @classmethod
    def from_exception(cls, exc: BaseException) -> "JobExecutionFailure":
        return cls(
            str(exc),
            kind=exception_kind(exc),
            backtrace=format_backtrace(exc),
        )


class TermException(BaseException):
    """Raised inside the child process when SIGTERM is forwarded to it.

    Derives from BaseException so `except Exception` in job code does not
    swallow it.
    """


def exception_kind(exc: BaseException) -> str:
    """Name recorded as the failure's exception kind.

    Every dirty exit is recorded as `DirtyExit`; the subclass shows in the
    message.
    """
    if isinstance(exc, JobExecutionFailure):
        return exc.kind
    if isinstance(exc, DirtyExit):
        return "DirtyExit"
    return type(exc).__name__


def format_backtrace(exc: BaseException) -> list[str]:
    """Backtrace lines for a failure record."""
    if isinstance(exc, JobExecutionFailure) and exc.backtrace:
        return list(exc.backtrace)
    if exc.__traceback__ is None:
        return []
    return [line.rstrip("\n") for line in traceback.format_tb(exc.__traceback__)]
