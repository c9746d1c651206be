import os
import signal
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from forkq.failure import FailureTracker
from forkq.registry import JobRegistry
from forkq.store.memory import MemoryStore
from forkq.worker import Worker
from jobs import ALL_JOBS, FailingJobWithHooks, PrefixedHooksJob, RaisingFailureHookJob


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def registry() -> JobRegistry:
    registry = JobRegistry()
    for job_class in ALL_JOBS:
        registry.register(job_class)
    return registry


@pytest.fixture
def failures(store: MemoryStore) -> FailureTracker:
    return FailureTracker(store)


@pytest.fixture(autouse=True)
def reset_hook_calls() -> None:
    FailingJobWithHooks.calls.clear()
    PrefixedHooksJob.calls.clear()
    RaisingFailureHookJob.calls.clear()


@pytest.fixture
def signal_when_started() -> Iterator[Callable[[Path, int], None]]:
    """Send a signal to this process once a job has written its marker file.

    Polls from a SIGALRM interval timer so the worker loop keeps running in
    the main thread. Interval timers are not inherited by forked children.
    """
    previous = signal.getsignal(signal.SIGALRM)

    def arm(marker: Path, signum: int) -> None:
        def check(_signum: int, _frame: object) -> None:
            if marker.exists():
                signal.setitimer(signal.ITIMER_REAL, 0)
                os.kill(os.getpid(), signum)

        signal.signal(signal.SIGALRM, check)
        signal.setitimer(signal.ITIMER_REAL, 0.02, 0.02)

    yield arm

    signal.setitimer(signal.ITIMER_REAL, 0)
    signal.signal(signal.SIGALRM, previous)


@pytest.fixture
def make_worker(store: MemoryStore, registry: JobRegistry, failures: FailureTracker):
    def make(*queues: str, **kwargs: object) -> Worker:
        kwargs.setdefault("hostname", "testhost")
        return Worker(*queues, store=store, registry=registry, failure=failures, **kwargs)

    return make
