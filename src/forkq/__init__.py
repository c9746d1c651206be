"""
forkq

Resque-style background job worker: queue resolution with wildcards,
fork-per-job isolation, signal-driven shutdown, crash recovery and
failure tracking over a shared store.
"""

from .config import WorkerConfig
from .errors import (
    ConfigurationError,
    DirtyExit,
    ForkqError,
    JobExecutionFailure,
    MissingCapabilityError,
    NoQueueError,
    PruneDeadWorkerDirtyExit,
    StoreError,
    TermException,
)
from .failure import FailureTracker
from .hooks import Hooks
from .job import enqueue, enqueue_to, reserve
from .models import FailureRecord, Job, WorkerState, WorkingOnRecord
from .queues import QueueResolver
from .registry import JobRegistry, job_name
from .store import MemoryStore, Store, create_store
from .worker import Worker

__all__ = [
    "ConfigurationError",
    "DirtyExit",
    "FailureRecord",
    "FailureTracker",
    "ForkqError",
    "Hooks",
    "Job",
    "JobExecutionFailure",
    "JobRegistry",
    "MemoryStore",
    "MissingCapabilityError",
    "NoQueueError",
    "PruneDeadWorkerDirtyExit",
    "QueueResolver",
    "Store",
    "StoreError",
    "TermException",
    "Worker",
    "WorkerConfig",
    "WorkerState",
    "WorkingOnRecord",
    "create_store",
    "enqueue",
    "enqueue_to",
    "job_name",
    "reserve",
]
__version__ = "0.1.0"
