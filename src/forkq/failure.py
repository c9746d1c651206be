"""Failure tracking with pluggable backends."""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from .config import WorkerConfig
from .errors import exception_kind, format_backtrace
from .models import FailureRecord, utcnow
from .store.base import Store

logger = logging.getLogger(__name__)


class FailureBackend(ABC):
    """Where failure records go.

    Every backend can save. Backends that keep records also support the
    read and maintenance operations; write-only backends raise
    NotImplementedError for those.
    """

    @abstractmethod
    def save(self, record: FailureRecord) -> None:
        """Persist one failure record."""

    def count(self) -> int:
        raise NotImplementedError(f"{type(self).__name__} does not keep records")

    def all(self, offset: int = 0, limit: int = 1) -> list[FailureRecord]:
        raise NotImplementedError(f"{type(self).__name__} does not keep records")

    def clear(self) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not keep records")

    def requeue(self, index: int) -> FailureRecord:
        raise NotImplementedError(f"{type(self).__name__} does not keep records")

    def remove(self, index: int) -> None:
        raise NotImplementedError(f"{type(self).__name__} does not keep records")

    def requeue_queue(self, queue: str) -> int:
        raise NotImplementedError(f"{type(self).__name__} does not keep records")

    def remove_queue(self, queue: str) -> int:
        raise NotImplementedError(f"{type(self).__name__} does not keep records")


class StoreFailureBackend(FailureBackend):
    """Keeps failures in the shared store's failure list, oldest first."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def save(self, record: FailureRecord) -> None:
        self.store.append_failure(record.to_dict())

    def count(self) -> int:
        return self.store.failure_count()

    def all(self, offset: int = 0, limit: int = 1) -> list[FailureRecord]:
        return [
            FailureRecord.model_validate(data)
            for data in self.store.failure_page(offset, limit)
        ]

    def clear(self) -> None:
        self.store.failure_clear()

    def requeue(self, index: int) -> FailureRecord:
        """Push a failed payload back onto its queue and stamp `retried_at`."""
        records = self.all(index, 1)
        if not records:
            raise IndexError(f"No failure at index {index}")
        return self._requeue_record(index, records[0])

    def _requeue_record(self, index: int, record: FailureRecord) -> FailureRecord:
        self.store.push(record.queue, record.payload)
        retried = record.model_copy(update={"retried_at": utcnow()})
        self.store.failure_set(index, retried.to_dict())
        return retried

    def remove(self, index: int) -> None:
        if index < 0 or index >= self.count():
            raise IndexError(f"No failure at index {index}")
        self.store.failure_delete(index)

    def requeue_queue(self, queue: str) -> int:
        """Requeue every failure recorded for `queue`; records are kept.

        Reads one snapshot of the list and then updates records by position.
        Failures appended meanwhile are left alone. Not atomic against
        `remove` from another process, which shifts the positions; run bulk
        requeues while no one else deletes records.
        """
        requeued = 0
        for index, record in enumerate(self.all(0, self.count())):
            if record.queue == queue:
                self._requeue_record(index, record)
                requeued += 1
        return requeued

    def remove_queue(self, queue: str) -> int:
        """Delete every failure recorded for `queue`, keeping the others in order.

        Like `requeue_queue`, this deletes by position from one snapshot and
        is not atomic against concurrent edits of the failure list.
        """
        records = self.all(0, self.count())
        removed = 0
        # Highest index first so earlier positions stay valid.
        for index in reversed(range(len(records))):
            if records[index].queue == queue:
                self.store.failure_delete(index)
                removed += 1
        return removed


class WebhookFailureBackend(FailureBackend):
    """Delivers every failure as a JSON POST to an HTTP endpoint. Write-only."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        """
        Initialize webhook backend.

        Args:
            url: Target endpoint
            timeout: Request timeout in seconds
            headers: Extra request headers
        """
        self.url = url
        self.timeout = timeout
        self.headers = {
            "Content-Type": "application/json",
            "User-Agent": "forkq-failure-webhook/1.0",
            **(headers or {}),
        }

    def save(self, record: FailureRecord) -> None:
        body = {"event_type": "job.failed", "failure": record.to_dict()}
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(self.url, headers=self.headers, json=body)
        response.raise_for_status()


class MultipleFailureBackend(FailureBackend):
    """Saves to every backend; reads from the first one."""

    def __init__(self, *backends: FailureBackend) -> None:
        if not backends:
            raise ValueError("MultipleFailureBackend needs at least one backend")
        self.backends = list(backends)

    def save(self, record: FailureRecord) -> None:
        errors: list[Exception] = []
        for backend in self.backends:
            try:
                backend.save(record)
            except Exception as e:
                logger.error(f"Failure backend {type(backend).__name__} failed: {e}")
                errors.append(e)
        if errors:
            raise errors[0]

    def count(self) -> int:
        return self.backends[0].count()

    def all(self, offset: int = 0, limit: int = 1) -> list[FailureRecord]:
        return self.backends[0].all(offset, limit)

    def clear(self) -> None:
        self.backends[0].clear()

    def requeue(self, index: int) -> FailureRecord:
        return self.backends[0].requeue(index)

    def remove(self, index: int) -> None:
        self.backends[0].remove(index)

    def requeue_queue(self, queue: str) -> int:
        return self.backends[0].requeue_queue(queue)

    def remove_queue(self, queue: str) -> int:
        return self.backends[0].remove_queue(queue)


class FailureTracker:
    """Records job failures and exposes paging and maintenance operations.

    `create` never raises: a broken backend is logged and otherwise ignored,
    so failure bookkeeping cannot take the worker loop down.
    """

    def __init__(self, store: Store, backend: FailureBackend | None = None) -> None:
        self.store = store
        self.backend = backend or StoreFailureBackend(store)

    @classmethod
    def from_config(cls, store: Store, config: WorkerConfig) -> "FailureTracker":
        """Store backend, plus a webhook backend when one is configured."""
        backend: FailureBackend = StoreFailureBackend(store)
        if config.failure_webhook_url:
            backend = MultipleFailureBackend(
                backend,
                WebhookFailureBackend(
                    config.failure_webhook_url,
                    timeout=config.failure_webhook_timeout_seconds,
                ),
            )
        return cls(store, backend)

    def create(
        self,
        exception: BaseException,
        worker_id: str,
        queue: str,
        payload: dict[str, Any],
        backtrace: list[str] | None = None,
    ) -> FailureRecord | None:
        """Record a failure; returns the record, or None if the backend failed."""
        try:
            record = FailureRecord(
                exception_kind=exception_kind(exception),
                message=str(exception),
                backtrace=backtrace or format_backtrace(exception),
                worker_id=worker_id,
                queue=queue,
                payload=payload,
            )
            self.backend.save(record)
        except Exception:
            logger.exception(f"Could not save failure for job on {queue} from {worker_id}")
            return None
        return record

    def count(self) -> int:
        return self.backend.count()

    def all(self, offset: int = 0, limit: int = 1) -> list[FailureRecord]:
        """Page through failures; index 0 is the oldest record."""
        return self.backend.all(offset, limit)

    def get(self, index: int) -> FailureRecord | None:
        records = self.backend.all(index, 1)
        return records[0] if records else None

    def clear(self) -> None:
        self.backend.clear()

    def requeue(self, index: int) -> FailureRecord:
        return self.backend.requeue(index)

    def remove(self, index: int) -> None:
        self.backend.remove(index)

    def requeue_queue(self, queue: str) -> int:
        count = self.backend.requeue_queue(queue)
        logger.info(f"Requeued {count} failed job(s) from {queue}")
        return count

    def remove_queue(self, queue: str) -> int:
        count = self.backend.remove_queue(queue)
        logger.info(f"Removed {count} failed job(s) from {queue}")
        return count
