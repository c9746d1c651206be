"""Enqueueing, reservation and in-process execution of jobs."""

import logging
from collections.abc import Iterable
from typing import Any

from .errors import NoQueueError
from .models import Job, JobPayload
from .registry import JobRegistry, job_name, resolve_perform
from .store.base import Store

logger = logging.getLogger(__name__)


def enqueue_to(store: Store, queue: str, job_class: type | str, *args: Any) -> Job:
    """Push a job for `job_class` onto a named queue."""
    queue = str(queue).strip()
    if not queue:
        raise NoQueueError("Jobs must be placed onto a queue.")
    payload = JobPayload.model_validate({"class": job_name(job_class), "args": list(args)})
    store.push(queue, payload.to_dict())
    logger.debug(f"Enqueued {payload.class_name} on {queue}")
    return Job(queue=queue, payload=payload)


def enqueue(store: Store, job_class: type, *args: Any) -> Job:
    """Push a job onto the queue named by the class's `queue` attribute."""
    queue = getattr(job_class, "queue", None)
    if not queue:
        raise NoQueueError(
            "Jobs must be placed onto a queue. "
            f"No queue could be inferred for {job_name(job_class)}"
        )
    return enqueue_to(store, queue, job_class, *args)


def reserve(store: Store, queues: Iterable[str]) -> Job | None:
    """Pop the first available job, scanning queues left to right.

    Non-blocking: returns None as soon as every queue came up empty.
    """
    for queue in queues:
        logger.debug(f"Checking {queue}")
        payload = store.pop(queue)
        if payload is not None:
            logger.debug(f"Found job on {queue}")
            return Job.from_store(queue, payload)
    return None


def resolve_job_class(job: Job, registry: JobRegistry) -> type | None:
    return registry.resolve(job.class_name)


def perform(job: Job, registry: JobRegistry) -> Any:
    """Run the job's `perform(*args)` in the calling process.

    Raises MissingCapabilityError if the class cannot be resolved or has no
    perform method; any exception from the job propagates.
    """
    job_class = resolve_job_class(job, registry)
    perform_fn = resolve_perform(job_class, job.class_name or "<missing>")
    return perform_fn(*job.args)
