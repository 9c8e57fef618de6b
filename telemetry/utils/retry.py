# ==============================================================================
# Retry Configuration
# ==============================================================================
"""
Backoff policy for reaching PostgreSQL outside the request path.

Pool creation and schema setup run at startup, when the database may still be
booting, so they retry with exponential backoff. The health probe behind
`/dbhealth` and `telemetry db status` retries briefly. Ingest and stats
queries never retry: ingestion answers 503 and stats fall back to the
zero-valued window.

    retry_standard  10 attempts, waits 1, 2, 4 ... capped at 32s (~63s total)
    retry_light      3 attempts, ~7s total
"""

import logging
from typing import Tuple, Type

import psycopg2
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

RETRY_ATTEMPTS = 10
RETRY_ATTEMPTS_LIGHT = 3
RETRY_WAIT_MIN = 1  # seconds
RETRY_WAIT_MAX = 32  # seconds

# Connection-level failures only; SQL errors are not transient
POSTGRES_RETRY_EXCEPTIONS = (
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
)

ExceptionTypes = Tuple[Type[Exception], ...]


def log_retry_attempt(logger: logging.Logger, max_attempts: int):
    """Build a tenacity before_sleep hook that logs each failed attempt."""

    def _log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "PostgreSQL not ready (attempt %d/%d): %s",
            retry_state.attempt_number,
            max_attempts,
            error,
        )

    return _log_retry


def _with_backoff(attempts: int, exception_types: ExceptionTypes, logger: logging.Logger):
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
        retry=retry_if_exception_type(exception_types),
        before_sleep=log_retry_attempt(logger, attempts),
        reraise=True,
    )


def retry_standard(exception_types: ExceptionTypes, logger: logging.Logger):
    """
    Retry decorator for startup work (pool creation, schema setup).

    Example:
        @retry_standard(POSTGRES_RETRY_EXCEPTIONS, logger)
        def ensure_schema():
            ...
    """
    return _with_backoff(RETRY_ATTEMPTS, exception_types, logger)


def retry_light(exception_types: ExceptionTypes, logger: logging.Logger):
    """Retry decorator for health probes."""
    return _with_backoff(RETRY_ATTEMPTS_LIGHT, exception_types, logger)
