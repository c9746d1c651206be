"""Fork lifecycle hooks and job failure hook dispatch."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .registry import FailureObserver

if TYPE_CHECKING:
    from .models import Job
    from .worker import Worker

logger = logging.getLogger(__name__)

FAILURE_HOOK_PREFIX = "on_failure"


@dataclass
class Hooks:
    """Callbacks run around forked job execution.

    Attributes:
        before_first_fork: Called with the worker once, before the first fork
        before_fork: Called with the job in the parent before every fork
        after_fork: Called with the job in the child before `perform`
    """

    before_first_fork: "Callable[[Worker], Any] | None" = None
    before_fork: "Callable[[Job], Any] | None" = None
    after_fork: "Callable[[Job], Any] | None" = None
    _first_fork_done: bool = field(default=False, init=False, repr=False)

    def run_before_first_fork(self, worker: "Worker") -> None:
        """Run `before_first_fork` unless it already ran for this object."""
        if self._first_fork_done:
            return
        self._first_fork_done = True
        if self.before_first_fork is not None:
            self.before_first_fork(worker)

    def run_before_fork(self, job: "Job") -> None:
        if self.before_fork is not None:
            self.before_fork(job)

    def run_after_fork(self, job: "Job") -> None:
        if self.after_fork is not None:
            self.after_fork(job)


def failure_hook(job_class: Any) -> Callable[..., Any] | None:
    """The single failure hook for a job class, or None.

    `on_failure` wins. Otherwise the first callable `on_failure_*` attribute
    (by name) is used, so a class exposing several names still gets one
    call per failure.
    """
    if job_class is None:
        return None
    if isinstance(job_class, FailureObserver) and callable(job_class.on_failure):
        return job_class.on_failure

    for name in sorted(dir(job_class)):
        if not name.startswith(FAILURE_HOOK_PREFIX + "_"):
            continue
        hook = getattr(job_class, name, None)
        if callable(hook):
            return hook
    return None


def run_failure_hook(job_class: Any, exception: BaseException, args: list[Any]) -> bool:
    """Invoke the job class's failure hook once with `(exception, *args)`.

    Errors raised by the hook are logged and swallowed. Returns whether a
    hook was found.
    """
    hook = failure_hook(job_class)
    if hook is None:
        return False
    try:
        hook(exception, *args)
    except Exception:
        logger.exception(f"Failure hook {getattr(hook, '__qualname__', hook)!r} raised; ignoring")
    return True
