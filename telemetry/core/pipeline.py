# ==============================================================================
# Ingestion Pipeline
# ==============================================================================
"""
Orchestrates normalization, geo resolution and storage for one request.

A request carries either a single event or a "batch" array. Each event is
handled independently:

    normalize -> validate -> attach geo -> store.append

A bad event, or a failed write for one event, is counted as skipped and the
batch continues; there is no all-or-nothing transaction across the batch.
Only a malformed envelope (SchemaUnsupportedError) or an unreachable store
(StoreUnavailableError) aborts the request.
"""

import logging
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import BaseModel

from telemetry.base.repositories import EventStore, StoreUnavailableError
from telemetry.core.geo_resolver import GeoResolver
from telemetry.core.models import SUPPORTED_SCHEMA
from telemetry.core.validation import normalize_event, validate_envelope, validate_event

logger = logging.getLogger(__name__)


class SchemaUnsupportedError(ValueError):
    """The request envelope is not an object tagged with the supported schema."""

    def __init__(self, got: Any = None):
        self.got = got
        super().__init__(f"Unsupported schema {got!r}, expected {SUPPORTED_SCHEMA!r}")


class IngestResult(BaseModel):
    """Per-request outcome counts."""

    accepted: int = 0
    skipped: int = 0


def extract_events(body: dict) -> list[Any]:
    """Return the raw events in an envelope; a single event is a batch of one."""
    batch = body.get("batch")
    if isinstance(batch, list):
        return batch
    return [body]


class IngestionPipeline:
    """
    Per-request ingestion.

    Holds only the store and resolver handles, both shared across requests;
    ingest() keeps all per-request state in locals.
    """

    def __init__(self, store: Optional[EventStore], geo_resolver: GeoResolver):
        """
        Initialize the pipeline.

        Args:
            store: Event store, or None when no store is configured
            geo_resolver: Shared geo resolver
        """
        self.store = store
        self.geo_resolver = geo_resolver

    def ingest(
        self,
        body: Any,
        headers: Mapping[str, str],
        peer_ip: Optional[str],
    ) -> IngestResult:
        """
        Ingest one request body.

        Args:
            body: Parsed JSON body
            headers: Request headers
            peer_ip: Transport-level peer address

        Returns:
            IngestResult with accepted/skipped counts

        Raises:
            SchemaUnsupportedError: Envelope is not a jwc.v1 object
            StoreUnavailableError: Store not configured or unreachable
        """
        if not validate_envelope(body):
            got = body.get("schema") if isinstance(body, dict) else None
            logger.warning("Rejected request: schema not supported (got %r)", got)
            raise SchemaUnsupportedError(got)

        if self.store is None:
            raise StoreUnavailableError("Event store is not configured")

        # Geography is resolved once and shared by every event in the batch
        geo = self.geo_resolver.resolve(headers, peer_ip)

        result = IngestResult()
        for raw in extract_events(body):
            event = normalize_event(raw)
            if event is None or not validate_event(event):
                result.skipped += 1
                logger.warning("Event skipped: invalid (%s)", _describe(raw))
                continue

            event = event.model_copy(update={"geo": geo})
            try:
                self.store.append(event)
            except StoreUnavailableError:
                logger.error(
                    "Store unavailable after %d accepted event(s), aborting request",
                    result.accepted,
                )
                raise
            except Exception as e:
                result.skipped += 1
                logger.error(
                    "Event skipped: store write failed for %s: %s", event.event_name.value, e
                )
                continue

            result.accepted += 1

        logger.debug("Ingested request: accepted=%d skipped=%d", result.accepted, result.skipped)
        return result


def _describe(raw: Any) -> str:
    """Short, log-safe description of a raw event."""
    if not isinstance(raw, dict):
        return type(raw).__name__
    return f"evt={raw.get('evt')!r} anon={str(raw.get('anon'))[:8]!r}"
