# ==============================================================================
# PostgreSQL Event Store
# ==============================================================================
"""
PostgreSQL implementation of the EventStore interface.

Provides:
- PostgreSQLEventStore: append-only event log on a threaded connection pool

Connections are checked out per operation from a
psycopg2.pool.ThreadedConnectionPool. The pool raises instead of blocking
when every connection is in use, so checkouts are gated by a semaphore sized
to pool_max: a busy pool makes callers wait up to pool_timeout_seconds.
Connection failures surface as StoreUnavailableError. Reads run with a
per-transaction statement_timeout.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

import psycopg2
from psycopg2.errors import QueryCanceled
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import PoolError, ThreadedConnectionPool
from pydantic import ValidationError

from telemetry.base.repositories import EventStore, StoreUnavailableError, clamp_recent_limit
from telemetry.core.models import CanonicalEvent
from telemetry.utils.config import Settings, get_settings
from telemetry.utils.db import CONNECT_TIMEOUT, check_db_connection, ensure_schema
from telemetry.utils.retry import POSTGRES_RETRY_EXCEPTIONS, retry_standard

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError)

INSERT_COLUMNS = (
    "t",
    "anon",
    "evt",
    "os",
    "ext",
    "vscode",
    "country",
    "region",
    "duration_ms",
    "wait_ms_total",
    "exit_code",
    "session_id",
    "out_bytes_bucket",
    "scanner_usage",
    "truncated_output",
    "error_phase",
    "exception_hash",
    "m",
)

EVENT_COLUMNS = "t, anon, evt, os, ext, vscode, country, region, m"

RECENT_COLUMNS = (
    "id, t, anon, evt, os, ext, vscode, country, region, duration_ms, wait_ms_total, "
    "exit_code, session_id, out_bytes_bucket, scanner_usage, truncated_output, "
    "error_phase, exception_hash"
)


class PostgreSQLEventStore(EventStore):
    """
    PostgreSQL implementation of EventStore.

    Each event is one row of <schema>.telemetry_events: typed metric columns
    for indexing plus the full metadata as jsonb. Rows are only ever
    inserted.
    """

    def __init__(self, settings: Settings | None = None):
        """
        Initialize the event store.

        Args:
            settings: Application settings. If None, uses get_settings().
        """
        self._settings = settings or get_settings()
        self._pg = self._settings.postgres
        self._pool: ThreadedConnectionPool | None = None
        self._slots: threading.BoundedSemaphore | None = None
        self._schema = self._pg.schema_name

    @property
    def schema(self) -> str:
        """Get the database schema name."""
        return self._schema

    @property
    def table(self) -> str:
        return f"{self._schema}.telemetry_events"

    @retry_standard(POSTGRES_RETRY_EXCEPTIONS, logger)
    def connect(self) -> None:
        """
        Open the connection pool.

        Retries on connection errors with exponential backoff.

        Raises:
            StoreUnavailableError: If PostgreSQL is not configured
        """
        if not self._pg.is_configured:
            raise StoreUnavailableError("PostgreSQL is not configured")
        if self._pool is not None:
            return
        self._pool = ThreadedConnectionPool(
            self._pg.pool_min,
            self._pg.pool_max,
            self._pg.connection_string,
            connect_timeout=CONNECT_TIMEOUT,
        )
        self._slots = threading.BoundedSemaphore(self._pg.pool_max)
        logger.info(
            "PostgreSQLEventStore connected (schema=%s, pool=%d..%d)",
            self._schema,
            self._pg.pool_min,
            self._pg.pool_max,
        )

    def initialize(self) -> None:
        """Create the schema, table and indexes if missing."""
        ensure_schema(self._pg)

    def close(self) -> None:
        """Close all pooled connections."""
        if self._pool:
            try:
                self._pool.closeall()
                logger.info("PostgreSQLEventStore connection pool closed")
            except PoolError as e:
                logger.warning("Error closing connection pool: %s", e)
            finally:
                self._pool = None
                self._slots = None

    # ==========================================================================
    # Connection handling
    # ==========================================================================

    @contextmanager
    def _connection(self) -> Iterator["psycopg2.extensions.connection"]:
        """
        Check out a pooled connection for one operation.

        Waits for a free slot when every pooled connection is in use.
        Connection-level failures are raised as StoreUnavailableError and the
        broken connection is discarded rather than returned to the pool.
        """
        pool, slots = self._pool, self._slots
        if pool is None or slots is None:
            raise StoreUnavailableError("PostgreSQL event store is not connected")
        if not slots.acquire(timeout=self._pg.pool_timeout_seconds):
            raise StoreUnavailableError(
                f"No pooled connection became free within {self._pg.pool_timeout_seconds}s"
            )

        try:
            try:
                conn = pool.getconn()
            except (PoolError, *CONNECTION_ERRORS) as e:
                raise StoreUnavailableError(f"Could not check out a connection: {e}") from e

            broken = False
            try:
                yield conn
            except QueryCanceled:
                self._rollback(conn)
                raise
            except CONNECTION_ERRORS as e:
                broken = True
                raise StoreUnavailableError(str(e).strip()) from e
            except Exception:
                self._rollback(conn)
                raise
            finally:
                pool.putconn(conn, close=broken or bool(conn.closed))
        finally:
            slots.release()

    @staticmethod
    def _rollback(conn) -> None:
        try:
            conn.rollback()
        except psycopg2.Error as e:
            logger.warning("Rollback failed: %s", e)

    def _set_read_timeout(self, cur) -> None:
        cur.execute("SET LOCAL statement_timeout = %s", (self._pg.statement_timeout_ms,))

    # ==========================================================================
    # Writes
    # ==========================================================================

    def append(self, event: CanonicalEvent) -> None:
        """
        Insert one event and commit it.

        Args:
            event: Validated, geo-enriched event

        Raises:
            StoreUnavailableError: If the database cannot be reached
            psycopg2.Error: If the row is rejected by the database
        """
        record = event.to_db_record()
        if record["m"] is not None:
            record["m"] = Json(record["m"])

        columns = ", ".join(INSERT_COLUMNS)
        placeholders = ", ".join(f"%({c})s" for c in INSERT_COLUMNS)
        with self._connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})",
                    record,
                )
            conn.commit()
        logger.debug("Inserted %s event for %s", record["evt"], record["anon"][:8])

    # ==========================================================================
    # Reads
    # ==========================================================================

    def _fetch(self, where: str, params: tuple) -> list[CanonicalEvent]:
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                self._set_read_timeout(cur)
                cur.execute(
                    f"SELECT {EVENT_COLUMNS} FROM {self.table} WHERE {where} ORDER BY t, id",
                    params,
                )
                rows = cur.fetchall()
            conn.rollback()

        events = []
        for row in rows:
            try:
                events.append(CanonicalEvent.from_db_record(row))
            except ValidationError as e:
                logger.warning("Ignoring unreadable stored event (%s): %s", row.get("evt"), e)
        return events

    def fetch_events(self, start: datetime, end: datetime) -> list[CanonicalEvent]:
        """Read all events with start <= t < end, oldest first."""
        return self._fetch("t >= %s AND t < %s", (start, end))

    def fetch_events_since(self, since: datetime) -> list[CanonicalEvent]:
        """Read all events with t >= since, oldest first."""
        return self._fetch("t >= %s", (since,))

    def count_events(
        self,
        event_name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        """Count events with a given name, optionally within [start, end)."""
        clauses = ["evt = %s"]
        params: list = [event_name]
        if start is not None:
            clauses.append("t >= %s")
            params.append(start)
        if end is not None:
            clauses.append("t < %s")
            params.append(end)

        with self._connection() as conn:
            with conn.cursor() as cur:
                self._set_read_timeout(cur)
                cur.execute(
                    f"SELECT count(*) FROM {self.table} WHERE {' AND '.join(clauses)}",
                    tuple(params),
                )
                count = cur.fetchone()[0]
            conn.rollback()
        return int(count)

    def recent(self, limit: int = 100) -> list[dict]:
        """Newest stored rows, newest first. limit is clamped to 1..500."""
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                self._set_read_timeout(cur)
                cur.execute(
                    f"SELECT {RECENT_COLUMNS} FROM {self.table} ORDER BY id DESC LIMIT %s",
                    (clamp_recent_limit(limit),),
                )
                rows = cur.fetchall()
            conn.rollback()
        return [dict(row) for row in rows]

    def counts_since(self, since: datetime) -> list[dict]:
        """Per event-name counts for t >= since, largest first."""
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                self._set_read_timeout(cur)
                cur.execute(
                    f"""
                    SELECT evt, count(*)::int AS count
                    FROM {self.table}
                    WHERE t >= %s
                    GROUP BY evt
                    ORDER BY count DESC, evt
                    """,
                    (since,),
                )
                rows = cur.fetchall()
            conn.rollback()
        return [dict(row) for row in rows]

    def health(self) -> tuple[bool, str]:
        """Check PostgreSQL is reachable; returns (ok, version or error)."""
        return check_db_connection(self._pg)
