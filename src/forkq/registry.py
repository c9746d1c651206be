"""Job class registry and capability resolution."""

import importlib
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from .errors import MissingCapabilityError


@runtime_checkable
class Executable(Protocol):
    """A job class that can run: `perform(*args)`."""

    def perform(self, *args: Any) -> Any: ...


@runtime_checkable
class FailureObserver(Protocol):
    """A job class that wants to hear about its failures."""

    def on_failure(self, exception: BaseException, *args: Any) -> Any: ...


def job_name(job_class: type | str) -> str:
    """Name stored in a payload's `class` field.

    Strings pass through; classes are named by import path so any worker
    can resolve them without a registry.
    """
    if isinstance(job_class, str):
        return job_class
    return f"{job_class.__module__}.{job_class.__qualname__}"


def import_job_class(path: str) -> type | None:
    """Import `package.module.Class` (nested classes allowed); None if absent."""
    parts = path.split(".")
    for split in range(len(parts) - 1, 0, -1):
        module_name = ".".join(parts[:split])
        try:
            target: Any = importlib.import_module(module_name)
        except ImportError:
            continue
        try:
            for attr in parts[split:]:
                target = getattr(target, attr)
        except AttributeError:
            return None
        return target if isinstance(target, type) else None
    return None


def resolve_perform(job_class: Any, name: str | None = None) -> Callable[..., Any]:
    """Return the class's callable `perform` or raise MissingCapabilityError."""
    label = name or getattr(job_class, "__name__", repr(job_class))
    if job_class is None:
        raise MissingCapabilityError(f"Job class not found: {label}", {"class": label})
    perform = job_class.perform if isinstance(job_class, Executable) else None
    if not callable(perform):
        raise MissingCapabilityError(
            f"Job class {label} has no perform method", {"class": label}
        )
    return perform


class JobRegistry:
    """Registry mapping payload class names to job classes."""

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._classes: dict[str, type] = {}

    def register(self, job_class: type, name: str | None = None) -> None:
        """
        Register a job class.

        Args:
            job_class: Class exposing `perform(*args)`
            name: Payload name (defaults to the class's import path)
        """
        key = name or job_name(job_class)
        if key in self._classes and self._classes[key] is not job_class:
            raise ValueError(f"Job class already registered for name: {key}")
        self._classes[key] = job_class

    def job(self, name: str | None = None) -> Callable[[type], type]:
        """Decorator form of `register`.

        Usage:
            @registry.job("send_email")
            class SendEmail:
                queue = "mail"

                @staticmethod
                def perform(address):
                    ...
        """

        def decorator(job_class: type) -> type:
            self.register(job_class, name)
            return job_class

        return decorator

    def get(self, name: str) -> type | None:
        """Get a registered class by name."""
        return self._classes.get(name)

    def resolve(self, name: str | None) -> type | None:
        """Find the class for a payload name: registry first, then import path."""
        if not name:
            return None
        registered = self._classes.get(name)
        if registered is not None:
            return registered
        if "." in name:
            return import_job_class(name)
        return None
