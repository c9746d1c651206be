"""Core worker: reservation loop, forked execution, registry and shutdown."""

import logging
import os
import signal
import socket
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

import psutil

from .config import WorkerConfig
from .errors import DirtyExit, PruneDeadWorkerDirtyExit, exception_kind
from .execution import ExecutionResult, ForkedExecution, run_in_process
from .failure import FailureTracker
from .hooks import Hooks, run_failure_hook
from .job import reserve as reserve_job
from .models import Job, WorkerState, WorkingOnRecord, utcnow
from .queues import QueueResolver
from .registry import JobRegistry
from .signals import SignalRequests, signal_name
from .store.base import Store

logger = logging.getLogger(__name__)

JobCallback = Callable[[Job], Any]

# How often blocking waits stop to look at pending signals
SIGNAL_CHECK_SECONDS = 0.1

TERM_CHILD_WARNING = (
    "WARNING: term_child is disabled. On TERM/INT a running job is not signalled "
    "and may continue unsupervised after the worker exits. "
    "Set FORKQ_TERM_CHILD=1 to forward the signal to the job."
)


def parse_worker_id(worker_id: str) -> tuple[str, int | None, list[str]]:
    """Split `host:pid:queue,queue` into its parts."""
    host, _, rest = worker_id.partition(":")
    pid_part, _, queues_part = rest.partition(":")
    try:
        pid: int | None = int(pid_part)
    except ValueError:
        pid = None
    queues = [name for name in queues_part.split(",") if name]
    return host, pid, queues


def pid_alive(pid: int) -> bool:
    """Whether a process with this pid exists on this host (zombies are dead)."""
    if pid <= 0:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


class Worker:
    """Polls queues and runs each job in a forked child process.

    Handles:
    - Queue resolution with `*` expanded at every poll
    - Fork isolation with before/after fork hooks
    - Registration, working-on records and crash recovery of dead workers
    - QUIT (graceful), TERM/INT (forwarded or abandoned), USR1 (kill child),
      USR2/CONT (pause/resume)
    - Failure records and the job class's failure hook
    """

    def __init__(
        self,
        *queues: str,
        store: Store,
        registry: JobRegistry | None = None,
        hooks: Hooks | None = None,
        failure: FailureTracker | None = None,
        interval: float = 5.0,
        term_timeout: float = 4.0,
        term_child: bool = False,
        fork_per_job: bool = True,
        hostname: str | None = None,
    ) -> None:
        """
        Initialize worker.

        Args:
            queues: Queue names in priority order; "*" means every known queue
            store: Shared store
            registry: Job classes by payload name (import paths also resolve)
            hooks: Fork lifecycle hooks
            failure: Failure tracker (defaults to the store's failure list)
            interval: Default seconds `work` sleeps after an empty poll
            term_timeout: Seconds between a forwarded SIGTERM and SIGKILL
            term_child: Forward TERM/INT to the running job
            fork_per_job: Run jobs in a forked child (False runs them in-process)
            hostname: Host part of the worker id (defaults to this host)

        Raises:
            NoQueueError: If no queue names were given
        """
        self.resolver = QueueResolver(queues)
        self.store = store
        self.registry = registry or JobRegistry()
        self.hooks = hooks or Hooks()
        self.failure = failure or FailureTracker(store)
        self.interval = interval
        self.term_timeout = term_timeout
        self.term_child = term_child
        self.fork_per_job = fork_per_job and hasattr(os, "fork")

        self.hostname = hostname or socket.gethostname()
        self.pid = os.getpid()
        self.id = f"{self.hostname}:{self.pid}:{','.join(self.queues)}"

        self.state = WorkerState.IDLE
        self.signals = SignalRequests()
        self.shutdown_requested = False
        self.paused = False

        self._execution: ForkedExecution | None = None
        self._abandon_child = False
        self._kill_deadline: float | None = None

    @classmethod
    def from_config(cls, config: WorkerConfig, *, store: Store, **kwargs: Any) -> "Worker":
        """Build a worker from validated configuration."""
        kwargs.setdefault("failure", FailureTracker.from_config(store, config))
        return cls(
            *config.queues,
            store=store,
            interval=config.interval,
            term_timeout=config.term_timeout,
            term_child=config.term_child,
            fork_per_job=config.fork_per_job,
            **kwargs,
        )

    @property
    def queues(self) -> list[str]:
        """Configured queue names (with any wildcard unexpanded)."""
        return list(self.resolver.queues)

    def __str__(self) -> str:
        return self.id

    def __repr__(self) -> str:
        return f"<Worker {self.id}>"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Worker) and other.id == self.id

    def __hash__(self) -> int:
        return hash(self.id)

    # Registry lookups

    @classmethod
    def exists(cls, worker_id: "str | Worker", store: Store) -> bool:
        """Whether a worker id is registered."""
        return str(worker_id) in store.list_workers()

    @classmethod
    def find(cls, worker_id: str, store: Store, **kwargs: Any) -> "Worker | None":
        """A view of a registered worker, or None if it is not registered."""
        if not cls.exists(worker_id, store):
            return None
        host, pid, queues = parse_worker_id(worker_id)
        if not queues:
            return None
        worker = cls(*queues, store=store, hostname=host, **kwargs)
        worker.id = worker_id
        if pid is not None:
            worker.pid = pid
        return worker

    @classmethod
    def all(cls, store: Store, **kwargs: Any) -> list["Worker"]:
        """Every registered worker."""
        workers = (cls.find(worker_id, store, **kwargs) for worker_id in sorted(store.list_workers()))
        return [worker for worker in workers if worker is not None]

    @classmethod
    def working(cls, store: Store, **kwargs: Any) -> list["Worker"]:
        """Registered workers that are executing a job right now."""
        return [worker for worker in cls.all(store, **kwargs) if worker.is_working]

    # Status

    @property
    def job(self) -> WorkingOnRecord | None:
        """What this worker is executing, or None when idle."""
        record = self.store.get_working(self.id)
        return WorkingOnRecord.model_validate(record) if record is not None else None

    @property
    def is_working(self) -> bool:
        return self.store.get_working(self.id) is not None

    @property
    def is_idle(self) -> bool:
        return not self.is_working

    @property
    def processed(self) -> int:
        return self.store.get_counters(self.id)[0]

    @property
    def failed(self) -> int:
        return self.store.get_counters(self.id)[1]

    @property
    def started(self) -> datetime | None:
        return self.store.get_started(self.id)

    def worker_pids(self) -> set[int]:
        """Pids of live workers on this host, this process included."""
        pids = {os.getpid()}
        for worker_id in self.store.list_workers():
            host, pid, _ = parse_worker_id(worker_id)
            if host == self.hostname and pid is not None and pid_alive(pid):
                pids.add(pid)
        return pids

    # Registration

    def register_worker(self) -> None:
        self.store.register(self.id)
        self.store.set_started(self.id, utcnow())
        logger.info(f"Registered worker {self.id}")

    def unregister_worker(self, exception: BaseException | None = None) -> None:
        """Remove this worker from the registry.

        A job still recorded as in progress is failed with `exception`
        (DirtyExit by default) before the registration goes away.
        """
        record = self.store.get_working(self.id)
        if record is not None:
            job = WorkingOnRecord.model_validate(record).to_job()
            self._fail_job(job, exception or DirtyExit())
        self.store.unregister(self.id)
        logger.info(f"Unregistered worker {self.id}")

    def prune_dead_workers(self) -> list[str]:
        """Unregister workers on this host whose process is gone.

        Each dead worker's in-progress job, if any, is recorded as a
        PruneDeadWorkerDirtyExit failure. Workers on other hosts are left
        alone because their liveness cannot be checked from here.
        """
        pruned: list[str] = []
        for worker_id in sorted(self.store.list_workers()):
            host, pid, _ = parse_worker_id(worker_id)
            if host != self.hostname or pid is None or pid_alive(pid):
                continue
            dead = type(self).find(
                worker_id, self.store, registry=self.registry, failure=self.failure
            )
            if dead is None:
                continue
            logger.info(f"Pruning dead worker: {worker_id}")
            dead.unregister_worker(PruneDeadWorkerDirtyExit(worker_id))
            pruned.append(worker_id)
        return pruned

    def working_on(self, job: Job) -> None:
        """Record the job this worker is starting."""
        self.store.set_working(self.id, WorkingOnRecord.for_job(job).model_dump(mode="json"))

    def done_working(self) -> None:
        self.store.clear_working(self.id)
        self.state = WorkerState.IDLE

    # Reservation and in-process execution

    def reserve(self) -> Job | None:
        """Pop the first available job from the resolved queues."""
        self.state = WorkerState.RESERVING
        try:
            return reserve_job(self.store, self.resolver.resolve(self.store))
        finally:
            self.state = WorkerState.IDLE

    def perform(self, job: Job) -> bool:
        """Run a job in this process and record the outcome. True on success."""
        result = run_in_process(job, self.registry)
        self._record_outcome(job, result)
        return result.ok

    def process(self, job: Job | None = None) -> bool:
        """Reserve (unless given) and run one job in this process, without forking."""
        job = job or self.reserve()
        if job is None:
            return False
        self.working_on(job)
        try:
            return self.perform(job)
        finally:
            self.done_working()

    def _record_outcome(self, job: Job, result: ExecutionResult) -> None:
        self.state = WorkerState.REPORTING
        self.store.incr_processed(self.id)
        self.store.incr_stat("processed")
        if result.ok:
            logger.info(f"done: {job}")
            return

        exc = result.exception or DirtyExit()
        logger.error(f"{job} failed: {exception_kind(exc)}: {exc}")
        self.store.incr_failed(self.id)
        self.store.incr_stat("failed")
        self._fail_job(job, exc, result.backtrace)

    def _fail_job(self, job: Job, exc: BaseException, backtrace: list[str] | None = None) -> None:
        self.failure.create(
            exc,
            worker_id=self.id,
            queue=job.queue,
            payload=job.payload.to_dict(),
            backtrace=backtrace,
        )
        try:
            job_class = self.registry.resolve(job.class_name)
        except Exception:
            logger.exception(f"Could not load {job.class_name} to run its failure hook")
            return
        run_failure_hook(job_class, exc, job.args)

    # Main loop

    def work(self, interval: float | None = None, callback: JobCallback | None = None) -> None:
        """
        Process jobs until shutdown.

        Args:
            interval: Seconds to sleep after an empty poll (defaults to the
                worker's `interval`); 0 stops at the first empty poll
            callback: Called with each job after it ran, while the worker is
                still recorded as working on it
        """
        if interval is None:
            interval = self.interval
        try:
            self.startup()
            while True:
                self.handle_signals()
                if self.shutdown_requested:
                    break

                job = None if self.paused else self._reserve_safely()
                if job is not None:
                    self._work_one(job, callback)
                    continue

                if interval == 0:
                    break
                logger.debug(f"Sleeping for {interval} seconds")
                self._sleep(interval)
        finally:
            self.unregister_worker()
            self.signals.restore()
            self.state = WorkerState.IDLE

    def startup(self) -> None:
        """Install signal handlers, prune dead workers, register."""
        if not self.term_child:
            logger.warning(TERM_CHILD_WARNING)
        self.signals.install()
        self.prune_dead_workers()
        self.register_worker()

    def _reserve_safely(self) -> Job | None:
        try:
            return self.reserve()
        except Exception:
            logger.exception("Error reserving job")
            return None

    def _sleep(self, interval: float) -> None:
        deadline = time.monotonic() + interval
        while not self.shutdown_requested:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            time.sleep(min(SIGNAL_CHECK_SECONDS, remaining))
            self.handle_signals()

    def _work_one(self, job: Job, callback: JobCallback | None) -> None:
        logger.info(f"got: {job}")
        self.working_on(job)
        if self.fork_per_job:
            result = self._fork_and_wait(job)
        else:
            result = run_in_process(job, self.registry)

        if result is None:
            # Job abandoned on shutdown; unregister records it as a dirty exit.
            return

        try:
            self._record_outcome(job, result)
            if callback is not None:
                callback(job)
        finally:
            self.done_working()

    def _fork_and_wait(self, job: Job) -> ExecutionResult | None:
        self.state = WorkerState.DISPATCHING
        try:
            self.hooks.run_before_first_fork(self)
            self.hooks.run_before_fork(job)
        except Exception as exc:
            logger.exception(f"Fork hook failed for {job}")
            return ExecutionResult.failure(exc)

        execution = ForkedExecution(job, self.registry, self.hooks, self.term_child, self.store)
        self._execution = execution
        self._abandon_child = False
        self._kill_deadline = None
        try:
            pid = execution.start()
            self.state = WorkerState.RUNNING
            while not execution.wait(SIGNAL_CHECK_SECONDS):
                self.handle_signals()
                if self._abandon_child:
                    logger.warning(
                        f"WARNING: leaving child {pid} running unsupervised while shutting down"
                    )
                    return None
                if self._kill_deadline is not None and time.monotonic() >= self._kill_deadline:
                    logger.warning(f"Child {pid} still running after {self.term_timeout}s")
                    self.kill_child()
            return execution.outcome()
        finally:
            self._execution = None
            self._kill_deadline = None

    # Signals

    def handle_signals(self) -> None:
        """Apply signals received since the last safe point."""
        for signum in self.signals.pop_all():
            self.handle_signal(signum)

    def handle_signal(self, signum: int) -> None:
        logger.info(f"Received {signal_name(signum)}")
        if signum == getattr(signal, "SIGQUIT", None):
            self.shutdown()
        elif signum in (signal.SIGTERM, signal.SIGINT):
            self.shutdown()
            if self.term_child:
                self.terminate_child()
            elif self._execution is not None:
                self._abandon_child = True
        elif signum == getattr(signal, "SIGUSR1", None):
            self.kill_child()
        elif signum == getattr(signal, "SIGUSR2", None):
            self.pause_processing()
        elif signum == getattr(signal, "SIGCONT", None):
            self.unpause_processing()

    def shutdown(self) -> None:
        """Stop after the current job."""
        logger.info("Exiting...")
        self.shutdown_requested = True

    def terminate_child(self) -> None:
        """Send TERM to the running job and arm the SIGKILL deadline."""
        if self._execution is None or self._kill_deadline is not None:
            return
        self.state = WorkerState.TERMINATING
        self._execution.terminate()
        self._kill_deadline = time.monotonic() + self.term_timeout

    def kill_child(self) -> None:
        """Kill the running job immediately."""
        if self._execution is None:
            logger.debug("No child to kill.")
            return
        self.state = WorkerState.KILLED
        self._execution.kill()
        # Already killed; nothing left to escalate.
        self._kill_deadline = None

    def pause_processing(self) -> None:
        logger.info("USR2 received; pausing job processing")
        self.paused = True

    def unpause_processing(self) -> None:
        logger.info("CONT received; resuming job processing")
        self.paused = False
