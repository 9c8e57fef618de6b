# ==============================================================================
# HTTP Server
# ==============================================================================
"""
FastAPI application for event ingestion and dashboard stats.

Routes:
- POST /t              Ingest one event or a batch
- GET  /stats          StatsWindow for the whole history or ?from=&to=
- GET  /health         Liveness
- GET  /dbhealth       Event store reachability
- GET  /debug/recent   Newest stored rows (guarded by STATS_SECRET)
- GET  /debug/counts   Per-event counts for the last N hours (guarded)

The store and geo database are process-wide handles created once (by the
lifespan, unless injected) and shared by every request. Blocking store work
runs in the threadpool so requests proceed concurrently.
"""

import hmac
import json
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from telemetry.base.geo import GeoDatabase
from telemetry.base.repositories import EventStore, StoreUnavailableError
from telemetry.core.aggregator import StatsAggregator
from telemetry.core.geo_resolver import GeoResolver
from telemetry.core.models import SUPPORTED_SCHEMA
from telemetry.core.pipeline import IngestionPipeline, SchemaUnsupportedError
from telemetry.infrastructure.geo import open_geo_database
from telemetry.infrastructure.repositories import PostgreSQLEventStore
from telemetry.utils.config import Settings, get_settings
from telemetry.utils.versions import get_telemetry_version

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 50
DEFAULT_COUNT_HOURS = 24
MAX_COUNT_HOURS = 24 * 366 * 10


# ==============================================================================
# Wiring
# ==============================================================================


def _bind(app: FastAPI, store: Optional[EventStore], geo_database: Optional[GeoDatabase]) -> None:
    """Attach shared handles and the services built on them to app.state."""
    stats = app.state.settings.stats
    app.state.store = store
    app.state.geo_database = geo_database
    app.state.pipeline = IngestionPipeline(store, GeoResolver(geo_database))
    app.state.aggregator = StatsAggregator(
        store,
        window_days=stats.window_days,
        top_n=stats.top_n,
        recent_sessions_limit=stats.recent_sessions_limit,
        active_session_minutes=stats.active_session_minutes,
        timeout_ms=stats.timeout_ms,
        max_range_days=stats.max_range_days,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Open process-wide resources that were not injected.

    A geo database that fails to open degrades lookups to empty strings.
    A configured store that cannot be initialized is fatal.
    """
    settings: Settings = app.state.settings
    opened_store: Optional[EventStore] = None
    opened_geo: Optional[GeoDatabase] = None

    geo_database = app.state.geo_database
    if geo_database is None:
        geo_database = opened_geo = open_geo_database(settings)

    store = app.state.store
    if store is None and settings.postgres.is_configured:
        store = PostgreSQLEventStore(settings)
        await run_in_threadpool(store.connect)
        await run_in_threadpool(store.initialize)
        opened_store = store
    elif store is None:
        logger.warning("No event store configured; ingestion will answer 503")

    _bind(app, store, geo_database)
    logger.info("Telemetry service %s ready", get_telemetry_version())
    try:
        yield
    finally:
        if opened_store is not None:
            opened_store.close()
        if opened_geo is not None:
            opened_geo.close()


def _authorized(request: Request, key: Optional[str]) -> bool:
    secret = request.app.state.settings.stats.secret
    if not secret:
        return True
    supplied = request.headers.get("x-stats-key") or key or ""
    return hmac.compare_digest(supplied.encode(), secret.encode())


def _error(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, **extra})


# ==============================================================================
# Application
# ==============================================================================


def create_app(
    settings: Settings | None = None,
    store: Optional[EventStore] = None,
    geo_database: Optional[GeoDatabase] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings. If None, uses get_settings().
        store: Event store to use instead of the configured PostgreSQL store
        geo_database: Geo database to use instead of the configured mmdb file

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(title="Telemetry Ingest", version=get_telemetry_version(), lifespan=lifespan)
    app.state.settings = settings or get_settings()
    _bind(app, store, geo_database)

    @app.post("/t")
    async def ingest(request: Request):
        max_body = app.state.settings.server.max_body_bytes
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > max_body:
            return _error(413, "payload_too_large")
        raw = await request.body()
        if len(raw) > max_body:
            return _error(413, "payload_too_large")

        try:
            body = json.loads(raw)
        except ValueError:
            return _error(400, "invalid_json")

        peer_ip = request.client.host if request.client else None
        try:
            result = await run_in_threadpool(
                app.state.pipeline.ingest, body, dict(request.headers), peer_ip
            )
        except SchemaUnsupportedError:
            return _error(400, "schema_unsupported", expected=SUPPORTED_SCHEMA)
        except StoreUnavailableError as e:
            logger.error("Ingest rejected, store unavailable: %s", e)
            return _error(503, "store_unavailable")
        return {"ok": True, "accepted": result.accepted, "skipped": result.skipped}

    @app.get("/stats")
    async def stats(
        date_from: Optional[str] = Query(None, alias="from"),
        date_to: Optional[str] = Query(None, alias="to"),
    ):
        window = await run_in_threadpool(app.state.aggregator.compute_stats, date_from, date_to)
        return window.to_json()

    @app.get("/health")
    async def health():
        return {"ok": True, "ts": int(time.time() * 1000)}

    @app.get("/dbhealth")
    async def dbhealth():
        store = app.state.store
        if store is None:
            return {"enabled": False, "error": "event store not configured"}
        ok, detail = await run_in_threadpool(store.health)
        if ok:
            return {"enabled": True, "ok": True, "version": detail}
        return {"enabled": True, "ok": False, "error": detail}

    @app.get("/debug/recent")
    async def debug_recent(
        request: Request,
        limit: int = DEFAULT_RECENT_LIMIT,
        key: Optional[str] = None,
    ):
        if not _authorized(request, key):
            return _error(401, "unauthorized")
        store = app.state.store
        if store is None:
            return _error(503, "store_unavailable")
        try:
            rows = await run_in_threadpool(store.recent, limit)
        except StoreUnavailableError:
            return _error(503, "store_unavailable")
        return {"rows": jsonable_encoder(rows)}

    @app.get("/debug/counts")
    async def debug_counts(
        request: Request,
        hours: int = DEFAULT_COUNT_HOURS,
        key: Optional[str] = None,
    ):
        if not _authorized(request, key):
            return _error(401, "unauthorized")
        store = app.state.store
        if store is None:
            return _error(503, "store_unavailable")
        since = datetime.now(timezone.utc) - timedelta(hours=max(1, min(hours, MAX_COUNT_HOURS)))
        try:
            counts = await run_in_threadpool(store.counts_since, since)
        except StoreUnavailableError:
            return _error(503, "store_unavailable")
        return {
            "since": since.isoformat(),
            "total": sum(row["count"] for row in counts),
            "byEvent": {row["evt"]: row["count"] for row in counts},
        }

    return app
