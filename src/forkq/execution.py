"""Forked job execution.

The worker forks one child per job. The child reconnects the store, runs the
`after_fork` hook and the job, sends an `ExecutionResult` back through a pipe
and exits with `os._exit`. The parent never blocks for long: `wait` checks the
child for a bounded time so pending signals can be handled between checks.
"""

import logging
import os
import pickle
import signal
import sys
import time
from dataclasses import dataclass, field
from multiprocessing import Pipe
from multiprocessing.connection import Connection

from .errors import DirtyExit, JobExecutionFailure, format_backtrace
from .hooks import Hooks
from .job import perform
from .models import Job
from .registry import JobRegistry
from .signals import ignore_term, reset_child_signals, signal_name
from .store.base import Store

logger = logging.getLogger(__name__)

WAIT_SLICE_SECONDS = 0.01


def transferable(exc: BaseException) -> BaseException:
    """The exception itself if it survives pickling, else a JobExecutionFailure."""
    try:
        pickle.loads(pickle.dumps(exc))
    except Exception:
        return JobExecutionFailure.from_exception(exc)
    return exc


@dataclass(frozen=True)
class ExecutionResult:
    """How a job run ended."""

    ok: bool
    exception: BaseException | None = None
    backtrace: list[str] = field(default_factory=list)

    @classmethod
    def success(cls) -> "ExecutionResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, exc: BaseException) -> "ExecutionResult":
        return cls(ok=False, exception=exc, backtrace=format_backtrace(exc))


def run_in_process(job: Job, registry: JobRegistry) -> ExecutionResult:
    """Run a job in the calling process and capture its outcome."""
    try:
        perform(job, registry)
    except Exception as exc:
        return ExecutionResult.failure(exc)
    return ExecutionResult.success()


def _child_main(
    writer: Connection,
    job: Job,
    registry: JobRegistry,
    hooks: Hooks,
    term_child: bool,
    store: Store | None = None,
) -> int:
    reset_child_signals(term_child)
    try:
        if store is not None:
            store.after_fork()
        hooks.run_after_fork(job)
        perform(job, registry)
    except BaseException as exc:
        ignore_term()
        result = ExecutionResult(
            ok=False, exception=transferable(exc), backtrace=format_backtrace(exc)
        )
        code = 1
    else:
        ignore_term()
        result = ExecutionResult.success()
        code = 0

    try:
        writer.send(result)
    except Exception:
        logger.exception("Could not report job result to the worker")
        code = 1
    finally:
        writer.close()
    return code


class ForkedExecution:
    """One job running in a forked child process."""

    def __init__(
        self,
        job: Job,
        registry: JobRegistry,
        hooks: Hooks,
        term_child: bool,
        store: Store | None = None,
    ) -> None:
        self.job = job
        self.registry = registry
        self.hooks = hooks
        self.term_child = term_child
        self.store = store
        self.pid: int | None = None
        self.exitcode: int | None = None
        self._reader: Connection | None = None
        self._result: ExecutionResult | None = None
        self._eof = False

    def start(self) -> int:
        """Fork the child; returns its pid in the parent. Never returns in the child."""
        reader, writer = Pipe(duplex=False)
        pid = os.fork()
        if pid == 0:
            code = 1
            try:
                reader.close()
                code = _child_main(
                    writer, self.job, self.registry, self.hooks, self.term_child, self.store
                )
            finally:
                sys.stdout.flush()
                sys.stderr.flush()
                os._exit(code)

        writer.close()
        self._reader = reader
        self.pid = pid
        logger.debug(f"Forked {pid} for {self.job}")
        return pid

    @property
    def exited(self) -> bool:
        return self.exitcode is not None

    def _drain(self) -> None:
        # Read the result as soon as it arrives so a large payload cannot
        # block the child on a full pipe.
        if self._reader is None or self._result is not None or self._eof:
            return
        try:
            if self._reader.poll():
                self._result = self._reader.recv()
        except (EOFError, OSError):
            self._eof = True
        except Exception:
            logger.exception(f"Unreadable result from child {self.pid}")
            self._eof = True

    def _reap(self) -> bool:
        assert self.pid is not None
        try:
            pid, status = os.waitpid(self.pid, os.WNOHANG)
        except ChildProcessError:
            self.exitcode = 255
            return True
        if pid == 0:
            return False
        self.exitcode = os.waitstatus_to_exitcode(status)
        return True

    def wait(self, timeout: float) -> bool:
        """Wait up to `timeout` seconds for the child to exit; True once it has."""
        if self.exited:
            return True
        deadline = time.monotonic() + timeout
        while True:
            self._drain()
            if self._reap():
                self._drain()
                if self._reader is not None:
                    self._reader.close()
                    self._reader = None
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(WAIT_SLICE_SECONDS, remaining))

    def _send(self, sig: signal.Signals) -> None:
        if self.pid is None or self.exited:
            return
        try:
            os.kill(self.pid, sig)
        except ProcessLookupError:
            pass

    def terminate(self) -> None:
        """Ask the child to stop (SIGTERM)."""
        logger.info(f"Sending TERM signal to child {self.pid}")
        self._send(signal.SIGTERM)

    def kill(self) -> None:
        """Stop the child unconditionally (SIGKILL)."""
        logger.info(f"Killing child at {self.pid}")
        self._send(signal.SIGKILL)

    def outcome(self) -> ExecutionResult:
        """Result of an exited child.

        A child that died without reporting is a DirtyExit, unless it exited
        with status 0.
        """
        if self._result is not None:
            return self._result
        code = self.exitcode if self.exitcode is not None else 255
        if code < 0:
            return ExecutionResult.failure(
                DirtyExit(f"Child process received unhandled signal {signal_name(-code)}")
            )
        if code != 0:
            return ExecutionResult.failure(DirtyExit(f"Child process exited with status {code}"))
        return ExecutionResult.success()
