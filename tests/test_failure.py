import logging

import pytest

from forkq.config import WorkerConfig
from forkq.errors import DirtyExit, JobExecutionFailure
from forkq.failure import (
    FailureBackend,
    FailureTracker,
    MultipleFailureBackend,
    StoreFailureBackend,
    WebhookFailureBackend,
)
from forkq.models import FailureRecord
from forkq.store.memory import MemoryStore


def record_failures(failures: FailureTracker, queues: list[str]) -> None:
    for n, queue in enumerate(queues):
        failures.create(
            RuntimeError(f"failure {n}"),
            worker_id="host:1:*",
            queue=queue,
            payload={"class": "jobs.BadJob", "args": [n]},
        )


def test_create_builds_record(failures: FailureTracker) -> None:
    try:
        raise RuntimeError("Bad job!")
    except RuntimeError as exc:
        record = failures.create(
            exc, worker_id="host:1:jobs", queue="jobs", payload={"class": "jobs.BadJob"}
        )

    assert record is not None
    assert failures.count() == 1

    stored = failures.get(0)
    assert stored is not None
    assert stored.exception_kind == "RuntimeError"
    assert stored.message == "Bad job!"
    assert stored.worker_id == "host:1:jobs"
    assert stored.queue == "jobs"
    assert stored.payload == {"class": "jobs.BadJob"}
    assert stored.backtrace
    assert stored.retried_at is None


def test_create_uses_transferred_kind_and_backtrace(failures: FailureTracker) -> None:
    failure = JobExecutionFailure("cannot travel", kind="UnpicklableError", backtrace=["frame"])

    failures.create(failure, worker_id="w", queue="jobs", payload={})

    stored = failures.get(0)
    assert stored is not None
    assert stored.exception_kind == "UnpicklableError"
    assert stored.backtrace == ["frame"]


def test_create_with_explicit_backtrace(failures: FailureTracker) -> None:
    failures.create(DirtyExit(), worker_id="w", queue="jobs", payload={}, backtrace=["a", "b"])

    stored = failures.get(0)
    assert stored is not None
    assert stored.backtrace == ["a", "b"]
    assert stored.message == "Job was not completed"


def test_create_never_raises(store: MemoryStore, caplog: pytest.LogCaptureFixture) -> None:
    class BrokenBackend(FailureBackend):
        def save(self, record: FailureRecord) -> None:
            raise ConnectionError("store is down")

    failures = FailureTracker(store, BrokenBackend())

    with caplog.at_level(logging.ERROR, logger="forkq.failure"):
        result = failures.create(RuntimeError("x"), worker_id="w", queue="jobs", payload={})

    assert result is None
    assert "Could not save failure" in caplog.text


def test_all_pages_oldest_first(failures: FailureTracker) -> None:
    record_failures(failures, ["a", "b", "c", "d"])

    assert failures.count() == 4
    assert [r.message for r in failures.all()] == ["failure 0"]
    assert [r.message for r in failures.all(1, 2)] == ["failure 1", "failure 2"]
    assert [r.message for r in failures.all(0, 10)] == [
        "failure 0",
        "failure 1",
        "failure 2",
        "failure 3",
    ]
    assert failures.get(10) is None


def test_clear(failures: FailureTracker) -> None:
    record_failures(failures, ["a", "b"])
    failures.clear()
    assert failures.count() == 0


def test_requeue_single_record(failures: FailureTracker, store: MemoryStore) -> None:
    record_failures(failures, ["a", "b"])

    retried = failures.requeue(1)

    assert retried.retried_at is not None
    assert store.pop("b") == {"class": "jobs.BadJob", "args": [1]}
    assert failures.get(1).retried_at is not None  # type: ignore[union-attr]
    assert failures.get(0).retried_at is None  # type: ignore[union-attr]

    with pytest.raises(IndexError):
        failures.requeue(5)


def test_remove_single_record(failures: FailureTracker) -> None:
    record_failures(failures, ["a", "b", "c"])

    failures.remove(1)

    assert [r.queue for r in failures.all(0, 10)] == ["a", "c"]
    with pytest.raises(IndexError):
        failures.remove(2)


def test_requeue_queue(failures: FailureTracker, store: MemoryStore) -> None:
    record_failures(failures, ["q1", "q2", "q1", "q2"])

    assert failures.requeue_queue("q1") == 2

    records = failures.all(0, failures.count())
    assert failures.count() == 4
    for record in records:
        if record.queue == "q1":
            assert record.retried_at is not None
        else:
            assert record.retried_at is None

    assert store.queue_size("q1") == 2
    assert store.pop("q1") == {"class": "jobs.BadJob", "args": [0]}
    assert store.pop("q1") == {"class": "jobs.BadJob", "args": [2]}
    assert store.queue_size("q2") == 0


def test_requeue_queue_leaves_failures_appended_meanwhile() -> None:
    class BusyStore(MemoryStore):
        def failure_set(self, index: int, record: dict) -> None:
            super().failure_set(index, record)
            if self.failure_count() == 2:
                late = {**record, "retried_at": None, "payload": {"args": ["late"]}}
                self.append_failure(late)

    store = BusyStore()
    failures = FailureTracker(store)
    record_failures(failures, ["q1", "q2"])

    assert failures.requeue_queue("q1") == 1

    records = failures.all(0, 10)
    assert [r.retried_at is not None for r in records] == [True, False, False]
    assert records[2].payload == {"args": ["late"]}
    assert store.queue_size("q1") == 1


def test_remove_queue(failures: FailureTracker) -> None:
    record_failures(failures, ["q1", "q2", "q1", "q3", "q1", "q2"])

    assert failures.remove_queue("q1") == 3

    assert failures.count() == 3
    assert [(r.queue, r.payload["args"]) for r in failures.all(0, 10)] == [
        ("q2", [1]),
        ("q3", [3]),
        ("q2", [5]),
    ]


def test_remove_queue_without_matches(failures: FailureTracker) -> None:
    record_failures(failures, ["q1"])
    assert failures.remove_queue("other") == 0
    assert failures.count() == 1


def test_write_only_backend_rejects_reads() -> None:
    backend = WebhookFailureBackend("https://example.com/failures")

    with pytest.raises(NotImplementedError):
        backend.count()
    with pytest.raises(NotImplementedError):
        backend.requeue_queue("jobs")


def test_multiple_backend_saves_everywhere_and_reads_first(store: MemoryStore) -> None:
    saved: list[FailureRecord] = []

    class ListBackend(FailureBackend):
        def save(self, record: FailureRecord) -> None:
            saved.append(record)

    failures = FailureTracker(store, MultipleFailureBackend(StoreFailureBackend(store), ListBackend()))
    record_failures(failures, ["a", "b"])

    assert len(saved) == 2
    assert failures.count() == 2
    assert failures.remove_queue("a") == 1
    assert failures.count() == 1


def test_multiple_backend_reports_failing_member(store: MemoryStore) -> None:
    class BrokenBackend(FailureBackend):
        def save(self, record: FailureRecord) -> None:
            raise ConnectionError("down")

    backend = MultipleFailureBackend(StoreFailureBackend(store), BrokenBackend())
    failures = FailureTracker(store, backend)

    assert failures.create(RuntimeError("x"), worker_id="w", queue="jobs", payload={}) is None
    # The healthy backend still got the record.
    assert store.failure_count() == 1


def test_multiple_backend_needs_members() -> None:
    with pytest.raises(ValueError):
        MultipleFailureBackend()


def test_from_config(store: MemoryStore, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)

    plain = FailureTracker.from_config(store, WorkerConfig())
    assert isinstance(plain.backend, StoreFailureBackend)

    config = WorkerConfig(
        failure_webhook_url="https://hooks.example.com/failures",
        failure_webhook_timeout_seconds=3,
    )
    tracker = FailureTracker.from_config(store, config)

    assert isinstance(tracker.backend, MultipleFailureBackend)
    webhook = tracker.backend.backends[1]
    assert isinstance(webhook, WebhookFailureBackend)
    assert webhook.url == "https://hooks.example.com/failures"
    assert webhook.timeout == 3
