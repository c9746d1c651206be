"""PostgreSQL implementation of the shared store."""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from ..errors import StoreError
from .base import Store

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS forkq_queues (
    name TEXT PRIMARY KEY
);
CREATE TABLE IF NOT EXISTS forkq_jobs (
    id BIGSERIAL PRIMARY KEY,
    queue TEXT NOT NULL,
    payload JSONB NOT NULL
);
CREATE INDEX IF NOT EXISTS forkq_jobs_queue_id ON forkq_jobs (queue, id);
CREATE TABLE IF NOT EXISTS forkq_workers (
    id TEXT PRIMARY KEY
);
CREATE TABLE IF NOT EXISTS forkq_worker_state (
    worker_id TEXT PRIMARY KEY,
    started TIMESTAMPTZ,
    working JSONB,
    processed BIGINT NOT NULL DEFAULT 0,
    failed BIGINT NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS forkq_stats (
    name TEXT PRIMARY KEY,
    value BIGINT NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS forkq_failures (
    id BIGSERIAL PRIMARY KEY,
    record JSONB NOT NULL
);
"""

_COUNTER_COLUMNS = {"processed", "failed"}


class PostgresStore(Store):
    """Store backed by PostgreSQL tables.

    Uses connection pooling; every method runs in its own transaction.
    Queue pops use SELECT ... FOR UPDATE SKIP LOCKED so concurrent workers
    receive disjoint jobs.
    """

    def __init__(
        self,
        conninfo: str,
        *,
        min_size: int = 1,
        max_size: int = 4,
        timeout: float = 30.0,
        create_schema: bool = True,
    ) -> None:
        """Initialize database connection pool."""
        self._pool_kwargs: dict[str, Any] = {
            "conninfo": conninfo,
            "min_size": min_size,
            "max_size": max_size,
            "timeout": timeout,
        }
        self._parent_pool: ConnectionPool | None = None
        self.pool = ConnectionPool(**self._pool_kwargs, open=True)
        if create_schema:
            self.create_schema()

    @contextmanager
    def get_connection(self) -> Generator[psycopg.Connection[dict_row], None, None]:
        """Get a connection from the pool."""
        try:
            with self.pool.connection() as conn:
                conn.row_factory = dict_row
                yield conn
        except psycopg.Error as e:
            raise StoreError(f"Store operation failed: {e}") from e

    def _execute(self, query: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        with self.get_connection() as conn, conn.cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall() if cur.description else []
            conn.commit()
            return rows

    def create_schema(self) -> None:
        with self.get_connection() as conn:
            conn.execute(SCHEMA)
            conn.commit()

    # Queues

    def push(self, queue: str, payload: dict[str, Any]) -> None:
        with self.get_connection() as conn, conn.cursor() as cur:
            cur.execute(
                "INSERT INTO forkq_queues (name) VALUES (%s) ON CONFLICT (name) DO NOTHING",
                (queue,),
            )
            cur.execute(
                "INSERT INTO forkq_jobs (queue, payload) VALUES (%s, %s)",
                (queue, Jsonb(payload)),
            )
            conn.commit()

    def pop(self, queue: str) -> dict[str, Any] | None:
        rows = self._execute(
            """
                DELETE FROM forkq_jobs
                WHERE id = (
                    SELECT id
                    FROM forkq_jobs
                    WHERE queue = %s
                    ORDER BY id ASC
                    LIMIT 1
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING payload
                """,
            (queue,),
        )
        return rows[0]["payload"] if rows else None

    def queue_size(self, queue: str) -> int:
        rows = self._execute("SELECT COUNT(*) AS n FROM forkq_jobs WHERE queue = %s", (queue,))
        return int(rows[0]["n"])

    def list_queues(self) -> set[str]:
        return {row["name"] for row in self._execute("SELECT name FROM forkq_queues")}

    # Worker registry

    def register(self, worker_id: str) -> None:
        self._execute(
            "INSERT INTO forkq_workers (id) VALUES (%s) ON CONFLICT (id) DO NOTHING",
            (worker_id,),
        )

    def unregister(self, worker_id: str) -> None:
        with self.get_connection() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM forkq_workers WHERE id = %s", (worker_id,))
            cur.execute("DELETE FROM forkq_worker_state WHERE worker_id = %s", (worker_id,))
            conn.commit()

    def list_workers(self) -> set[str]:
        return {row["id"] for row in self._execute("SELECT id FROM forkq_workers")}

    def set_started(self, worker_id: str, started: datetime) -> None:
        self._execute(
            """
                INSERT INTO forkq_worker_state (worker_id, started) VALUES (%s, %s)
                ON CONFLICT (worker_id) DO UPDATE SET started = EXCLUDED.started
                """,
            (worker_id, started),
        )

    def get_started(self, worker_id: str) -> datetime | None:
        rows = self._execute(
            "SELECT started FROM forkq_worker_state WHERE worker_id = %s", (worker_id,)
        )
        return rows[0]["started"] if rows else None

    def set_working(self, worker_id: str, record: dict[str, Any]) -> None:
        self._execute(
            """
                INSERT INTO forkq_worker_state (worker_id, working) VALUES (%s, %s)
                ON CONFLICT (worker_id) DO UPDATE SET working = EXCLUDED.working
                """,
            (worker_id, Jsonb(record)),
        )

    def clear_working(self, worker_id: str) -> None:
        self._execute(
            "UPDATE forkq_worker_state SET working = NULL WHERE worker_id = %s", (worker_id,)
        )

    def get_working(self, worker_id: str) -> dict[str, Any] | None:
        rows = self._execute(
            "SELECT working FROM forkq_worker_state WHERE worker_id = %s", (worker_id,)
        )
        return rows[0]["working"] if rows else None

    # Counters

    def _incr(self, worker_id: str, column: str) -> int:
        if column not in _COUNTER_COLUMNS:
            raise ValueError(f"Unknown counter: {column}")
        rows = self._execute(
            f"""
                INSERT INTO forkq_worker_state (worker_id, {column}) VALUES (%s, 1)
                ON CONFLICT (worker_id)
                DO UPDATE SET {column} = forkq_worker_state.{column} + 1
                RETURNING {column} AS value
                """,
            (worker_id,),
        )
        return int(rows[0]["value"])

    def incr_processed(self, worker_id: str) -> int:
        return self._incr(worker_id, "processed")

    def incr_failed(self, worker_id: str) -> int:
        return self._incr(worker_id, "failed")

    def get_counters(self, worker_id: str) -> tuple[int, int]:
        rows = self._execute(
            "SELECT processed, failed FROM forkq_worker_state WHERE worker_id = %s",
            (worker_id,),
        )
        if not rows:
            return 0, 0
        return int(rows[0]["processed"]), int(rows[0]["failed"])

    def incr_stat(self, name: str) -> int:
        rows = self._execute(
            """
                INSERT INTO forkq_stats (name, value) VALUES (%s, 1)
                ON CONFLICT (name) DO UPDATE SET value = forkq_stats.value + 1
                RETURNING value
                """,
            (name,),
        )
        return int(rows[0]["value"])

    def get_stat(self, name: str) -> int:
        rows = self._execute("SELECT value FROM forkq_stats WHERE name = %s", (name,))
        return int(rows[0]["value"]) if rows else 0

    # Failures

    def append_failure(self, record: dict[str, Any]) -> None:
        self._execute("INSERT INTO forkq_failures (record) VALUES (%s)", (Jsonb(record),))

    def failure_count(self) -> int:
        return int(self._execute("SELECT COUNT(*) AS n FROM forkq_failures")[0]["n"])

    def failure_page(self, offset: int, limit: int) -> list[dict[str, Any]]:
        rows = self._execute(
            "SELECT record FROM forkq_failures ORDER BY id ASC OFFSET %s LIMIT %s",
            (offset, limit),
        )
        return [row["record"] for row in rows]

    def failure_set(self, index: int, record: dict[str, Any]) -> None:
        self._execute(
            """
                UPDATE forkq_failures SET record = %s
                WHERE id = (SELECT id FROM forkq_failures ORDER BY id ASC OFFSET %s LIMIT 1)
                """,
            (Jsonb(record), index),
        )

    def failure_delete(self, index: int) -> None:
        self._execute(
            """
                DELETE FROM forkq_failures
                WHERE id = (SELECT id FROM forkq_failures ORDER BY id ASC OFFSET %s LIMIT 1)
                """,
            (index,),
        )

    def failure_clear(self) -> None:
        self._execute("DELETE FROM forkq_failures")

    def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            self._execute("SELECT 1")
            return True
        except StoreError:
            return False

    def after_fork(self) -> None:
        """Open a fresh pool in a forked child.

        The inherited pool's sockets and worker threads belong to the parent.
        It stays referenced and is never closed here, so the child does not
        terminate the parent's server sessions.
        """
        self._parent_pool = self.pool
        self.pool = ConnectionPool(**self._pool_kwargs, open=True)

    def close(self) -> None:
        """Close connection pool gracefully."""
        self.pool.close()
