"""Shared store implementations."""

from importlib import import_module
from typing import TYPE_CHECKING, Any

from .base import Store
from .memory import MemoryStore

__all__ = ["Store", "MemoryStore", "PostgresStore", "create_store"]

if TYPE_CHECKING:
    from ..config import WorkerConfig
    from .postgres import PostgresStore


def create_store(config: "WorkerConfig") -> Store:
    """PostgreSQL store when `database_url` is configured, else an in-memory one."""
    if config.database_url_str:
        return import_module(".postgres", __name__).PostgresStore(config.database_url_str)
    return MemoryStore()


def __getattr__(name: str) -> Any:
    """Lazy attribute access so psycopg is only imported when needed."""
    if name == "PostgresStore":
        return import_module(".postgres", __name__).PostgresStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
