"""Shared store contract.

The store is the only state shared between worker processes. Every method
is a single atomic operation; the engine never relies on multi-step
transactions across workers.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any


class Store(ABC):
    """Atomic list/set/hash store used by workers, producers and failures."""

    # Queues

    @abstractmethod
    def push(self, queue: str, payload: dict[str, Any]) -> None:
        """Append a payload to the tail of a queue and mark the queue as known."""

    @abstractmethod
    def pop(self, queue: str) -> dict[str, Any] | None:
        """Atomically remove and return the head of a queue, or None if empty."""

    @abstractmethod
    def queue_size(self, queue: str) -> int:
        """Number of payloads waiting in a queue."""

    @abstractmethod
    def list_queues(self) -> set[str]:
        """Every queue name known to the store."""

    # Worker registry

    @abstractmethod
    def register(self, worker_id: str) -> None: ...

    @abstractmethod
    def unregister(self, worker_id: str) -> None:
        """Remove a worker id with its working record, started time and counters."""

    @abstractmethod
    def list_workers(self) -> set[str]: ...

    @abstractmethod
    def set_started(self, worker_id: str, started: datetime) -> None: ...

    @abstractmethod
    def get_started(self, worker_id: str) -> datetime | None: ...

    @abstractmethod
    def set_working(self, worker_id: str, record: dict[str, Any]) -> None: ...

    @abstractmethod
    def clear_working(self, worker_id: str) -> None: ...

    @abstractmethod
    def get_working(self, worker_id: str) -> dict[str, Any] | None: ...

    # Counters

    @abstractmethod
    def incr_processed(self, worker_id: str) -> int: ...

    @abstractmethod
    def incr_failed(self, worker_id: str) -> int: ...

    @abstractmethod
    def get_counters(self, worker_id: str) -> tuple[int, int]:
        """(processed, failed) for a worker; zeros when unknown."""

    @abstractmethod
    def incr_stat(self, name: str) -> int:
        """Increment a global counter (e.g. "processed", "failed")."""

    @abstractmethod
    def get_stat(self, name: str) -> int: ...

    # Failures (positional, oldest first)

    @abstractmethod
    def append_failure(self, record: dict[str, Any]) -> None: ...

    @abstractmethod
    def failure_count(self) -> int: ...

    @abstractmethod
    def failure_page(self, offset: int, limit: int) -> list[dict[str, Any]]: ...

    @abstractmethod
    def failure_set(self, index: int, record: dict[str, Any]) -> None:
        """Replace the record at a position."""

    @abstractmethod
    def failure_delete(self, index: int) -> None:
        """Remove the record at a position; later records shift down by one."""

    @abstractmethod
    def failure_clear(self) -> None: ...

    def after_fork(self) -> None:
        """Drop state that must not be shared with a forked parent."""

    def close(self) -> None:
        """Release backend resources."""
