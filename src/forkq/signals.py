"""Signal handling for workers and their job processes.

Handlers never change worker state themselves: they record the signal and
the worker applies it at its next safe point.
"""

import logging
import signal
import threading
from collections import deque
from types import FrameType
from typing import Any

from .errors import TermException

logger = logging.getLogger(__name__)

WORKER_SIGNALS = ("SIGTERM", "SIGINT", "SIGQUIT", "SIGUSR1", "SIGUSR2", "SIGCONT")
CHILD_DEFAULT_SIGNALS = ("SIGQUIT", "SIGUSR1", "SIGUSR2", "SIGCONT")


def _signals(names: tuple[str, ...]) -> list[signal.Signals]:
    # Platforms without POSIX signals simply lack some names.
    return [getattr(signal, name) for name in names if hasattr(signal, name)]


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


class SignalRequests:
    """Queue of signals received by the worker process."""

    def __init__(self) -> None:
        self._pending: deque[int] = deque()
        self._previous: dict[signal.Signals, Any] = {}

    def _handle(self, signum: int, frame: FrameType | None) -> None:
        self._pending.append(signum)

    def push(self, signum: int) -> None:
        """Queue a signal as if it had been delivered."""
        self._pending.append(signum)

    def pop_all(self) -> list[int]:
        signums: list[int] = []
        while self._pending:
            signums.append(self._pending.popleft())
        return signums

    @property
    def installed(self) -> bool:
        return bool(self._previous)

    def install(self) -> bool:
        """Install handlers; only possible from the main thread."""
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in the main thread; signal handlers not installed")
            return False
        for sig in _signals(WORKER_SIGNALS):
            self._previous[sig] = signal.signal(sig, self._handle)
        logger.debug("Registered signals")
        return True

    def restore(self) -> None:
        """Put back whatever handlers were active before `install`."""
        for sig, previous in self._previous.items():
            signal.signal(sig, previous if previous is not None else signal.SIG_DFL)
        self._previous.clear()


def _raise_term_exception(signum: int, frame: FrameType | None) -> None:
    raise TermException(f"SIGTERM received (signal {signum})")


def reset_child_signals(term_child: bool) -> None:
    """Signal dispositions for a forked job process.

    SIGTERM raises TermException inside the job when the parent forwards it
    (`term_child`), otherwise it keeps its default action. SIGINT raises
    KeyboardInterrupt. Everything the parent handles itself goes back to
    the default.
    """
    for sig in _signals(CHILD_DEFAULT_SIGNALS):
        signal.signal(sig, signal.SIG_DFL)
    signal.signal(signal.SIGINT, signal.default_int_handler)
    signal.signal(signal.SIGTERM, _raise_term_exception if term_child else signal.SIG_DFL)


def ignore_term() -> None:
    """Stop raising TermException once the job has finished."""
    signal.signal(signal.SIGTERM, signal.SIG_IGN)
