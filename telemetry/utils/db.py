# ==============================================================================
# Database Utilities
# ==============================================================================
"""
Database utility functions for the telemetry service.

Provides schema initialization, reset and health helpers.
Includes retry logic with exponential backoff for network resilience.
"""

import logging

import psycopg2
from jinja2 import Template

from telemetry.utils.config import PostgresSettings, get_settings
from telemetry.utils.paths import get_init_sql_path
from telemetry.utils.retry import POSTGRES_RETRY_EXCEPTIONS, retry_light, retry_standard

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 5


def render_schema_sql(schema_name: str) -> str:
    """Render the schema SQL template with the given schema name."""
    schema_file = get_init_sql_path()
    if not schema_file.exists():
        raise RuntimeError(f"Schema file not found: {schema_file}")

    template = Template(schema_file.read_text())
    return template.render(schema_name=schema_name)


@retry_standard(POSTGRES_RETRY_EXCEPTIONS, logger)
def ensure_schema(pg: PostgresSettings | None = None) -> None:
    """
    Ensure the events table and its indexes exist.

    Every statement in the template is idempotent, so this is safe to call on
    every start. Retries on connection errors with exponential backoff
    (10 attempts, ~60 seconds).

    Raises:
        RuntimeError: If the store is not configured or initialization fails
    """
    pg = pg or get_settings().postgres
    if not pg.is_configured:
        raise RuntimeError("PostgreSQL is not configured (set DATABASE_URL or PG_HOST/PG_USER)")

    schema_sql = render_schema_sql(pg.schema_name)
    logger.info("Ensuring database schema '%s'...", pg.schema_name)
    conn = psycopg2.connect(pg.connection_string, connect_timeout=CONNECT_TIMEOUT)
    try:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
        conn.commit()
    except POSTGRES_RETRY_EXCEPTIONS:
        raise
    except psycopg2.Error as e:
        raise RuntimeError(f"Failed to initialize schema: {e}") from e
    finally:
        conn.close()
    logger.info("Database schema '%s' ready.", pg.schema_name)


def reset_schema(pg: PostgresSettings | None = None) -> None:
    """
    Drop and recreate the database schema.

    WARNING: This deletes all stored events!
    """
    pg = pg or get_settings().postgres
    schema_sql = render_schema_sql(pg.schema_name)

    try:
        with psycopg2.connect(pg.connection_string, connect_timeout=CONNECT_TIMEOUT) as conn:
            with conn.cursor() as cur:
                cur.execute(f"DROP SCHEMA IF EXISTS {pg.schema_name} CASCADE")
                cur.execute(schema_sql)
            conn.commit()
    except psycopg2.Error as e:
        raise RuntimeError(f"Failed to reset schema: {e}") from e


@retry_light(POSTGRES_RETRY_EXCEPTIONS, logger)
def _server_version(pg: PostgresSettings) -> str:
    with psycopg2.connect(pg.connection_string, connect_timeout=CONNECT_TIMEOUT) as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT version()")
            return cur.fetchone()[0]


def check_db_connection(pg: PostgresSettings | None = None) -> tuple[bool, str]:
    """
    Check if PostgreSQL is reachable.

    Returns:
        (ok, detail) where detail is the server version or the error text
    """
    pg = pg or get_settings().postgres
    if not pg.is_configured:
        return False, "not configured"
    try:
        return True, _server_version(pg)
    except psycopg2.Error as e:
        return False, str(e).strip()
