"""In-process store for tests and single-host development."""

import copy
import threading
from collections import defaultdict, deque
from datetime import datetime
from typing import Any

from .base import Store


class MemoryStore(Store):
    """Thread-safe in-memory implementation of the store contract.

    State lives in the creating process only: a forked child sees a copy, so
    all bookkeeping must happen in the worker (parent) process.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._queues: dict[str, deque[dict[str, Any]]] = defaultdict(deque)
        self._known_queues: set[str] = set()
        self._workers: set[str] = set()
        self._started: dict[str, datetime] = {}
        self._working: dict[str, dict[str, Any]] = {}
        self._counters: dict[str, list[int]] = {}
        self._stats: dict[str, int] = defaultdict(int)
        self._failures: list[dict[str, Any]] = []

    def push(self, queue: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self._known_queues.add(queue)
            self._queues[queue].append(copy.deepcopy(payload))

    def pop(self, queue: str) -> dict[str, Any] | None:
        with self._lock:
            items = self._queues.get(queue)
            if not items:
                return None
            return items.popleft()

    def queue_size(self, queue: str) -> int:
        with self._lock:
            return len(self._queues.get(queue, ()))

    def list_queues(self) -> set[str]:
        with self._lock:
            return set(self._known_queues)

    def register(self, worker_id: str) -> None:
        with self._lock:
            self._workers.add(worker_id)

    def unregister(self, worker_id: str) -> None:
        with self._lock:
            self._workers.discard(worker_id)
            self._started.pop(worker_id, None)
            self._working.pop(worker_id, None)
            self._counters.pop(worker_id, None)

    def list_workers(self) -> set[str]:
        with self._lock:
            return set(self._workers)

    def set_started(self, worker_id: str, started: datetime) -> None:
        with self._lock:
            self._started[worker_id] = started

    def get_started(self, worker_id: str) -> datetime | None:
        with self._lock:
            return self._started.get(worker_id)

    def set_working(self, worker_id: str, record: dict[str, Any]) -> None:
        with self._lock:
            self._working[worker_id] = copy.deepcopy(record)

    def clear_working(self, worker_id: str) -> None:
        with self._lock:
            self._working.pop(worker_id, None)

    def get_working(self, worker_id: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._working.get(worker_id)
            return copy.deepcopy(record) if record is not None else None

    def _incr(self, worker_id: str, slot: int) -> int:
        with self._lock:
            counters = self._counters.setdefault(worker_id, [0, 0])
            counters[slot] += 1
            return counters[slot]

    def incr_processed(self, worker_id: str) -> int:
        return self._incr(worker_id, 0)

    def incr_failed(self, worker_id: str) -> int:
        return self._incr(worker_id, 1)

    def get_counters(self, worker_id: str) -> tuple[int, int]:
        with self._lock:
            processed, failed = self._counters.get(worker_id, (0, 0))
            return processed, failed

    def incr_stat(self, name: str) -> int:
        with self._lock:
            self._stats[name] += 1
            return self._stats[name]

    def get_stat(self, name: str) -> int:
        with self._lock:
            return self._stats.get(name, 0)

    def append_failure(self, record: dict[str, Any]) -> None:
        with self._lock:
            self._failures.append(copy.deepcopy(record))

    def failure_count(self) -> int:
        with self._lock:
            return len(self._failures)

    def failure_page(self, offset: int, limit: int) -> list[dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._failures[offset : offset + limit])

    def failure_set(self, index: int, record: dict[str, Any]) -> None:
        with self._lock:
            self._failures[index] = copy.deepcopy(record)

    def failure_delete(self, index: int) -> None:
        with self._lock:
            del self._failures[index]

    def failure_clear(self) -> None:
        with self._lock:
            self._failures.clear()
