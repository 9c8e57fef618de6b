# ==============================================================================
# Shared Test Fixtures
# ==============================================================================
"""
Pytest fixtures shared across all test modules.

Provides:
- FakeEventStore: in-memory EventStore with switchable failures and latency
- FakeGeoDatabase: canned IP -> GeoLocation table that records lookups
- Event factories for raw client payloads and canonical events
- Settings and a FastAPI TestClient wired to the fakes
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from telemetry.base.geo import GeoDatabase
from telemetry.base.repositories import EventStore, StoreUnavailableError, clamp_recent_limit
from telemetry.core.models import EPOCH, CanonicalEvent, EventMetadata, GeoLocation
from telemetry.server import create_app
from telemetry.utils.config import GeoSettings, ServerSettings, Settings, StatsSettings

ANON_A = "a" * 32
ANON_B = "b" * 32
ANON_C = "0123456789abcdef0123456789abcdef"

# 2025-01-15T12:00:00Z, a Wednesday
BASE_MS = 1736942400000
NOW = datetime(2025, 1, 15, 12, 30, tzinfo=timezone.utc)


# ==============================================================================
# Fakes
# ==============================================================================


class FakeEventStore(EventStore):
    """In-memory append-only event store."""

    def __init__(self, events: Optional[list[CanonicalEvent]] = None):
        self.events: list[CanonicalEvent] = list(events or [])
        self.connected = False
        self.fail_reads = False
        self.read_delay = 0.0
        self.unavailable_after: Optional[int] = None
        self.reject_event_names: set[str] = set()

    def connect(self) -> None:
        self.connected = True

    def close(self) -> None:
        self.connected = False

    def initialize(self) -> None:
        pass

    def append(self, event: CanonicalEvent) -> None:
        if self.unavailable_after is not None and len(self.events) >= self.unavailable_after:
            raise StoreUnavailableError("connection refused")
        if event.event_name.value in self.reject_event_names:
            raise ValueError("row rejected")
        self.events.append(event)

    def _read(self) -> list[CanonicalEvent]:
        if self.read_delay:
            time.sleep(self.read_delay)
        if self.fail_reads:
            raise StoreUnavailableError("connection refused")
        return sorted(self.events, key=lambda e: e.timestamp_ms)

    def fetch_events(self, start: datetime, end: datetime) -> list[CanonicalEvent]:
        return [e for e in self._read() if start <= e.event_time < end]

    def fetch_events_since(self, since: datetime) -> list[CanonicalEvent]:
        return [e for e in self._read() if e.event_time >= since]

    def count_events(self, event_name, start=None, end=None) -> int:
        return sum(
            1
            for e in self._read()
            if e.event_name.value == event_name
            and (start is None or e.event_time >= start)
            and (end is None or e.event_time < end)
        )

    def recent(self, limit: int = 100) -> list[dict]:
        rows = []
        for i, event in enumerate(self._read(), start=1):
            row = event.to_db_record()
            row["id"] = i
            rows.append(row)
        return list(reversed(rows))[: clamp_recent_limit(limit)]

    def counts_since(self, since: datetime) -> list[dict]:
        counts: dict[str, int] = {}
        for event in self.fetch_events_since(since):
            counts[event.event_name.value] = counts.get(event.event_name.value, 0) + 1
        return [
            {"evt": evt, "count": count}
            for evt, count in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        ]

    def health(self) -> tuple[bool, str]:
        if self.fail_reads:
            return False, "connection refused"
        return True, "PostgreSQL 16.2 (fake)"


class FakeGeoDatabase(GeoDatabase):
    """Geo database backed by a dict; unknown addresses resolve to empty."""

    def __init__(self, table: Optional[dict[str, GeoLocation]] = None, fail: bool = False):
        self.table = table or {}
        self.fail = fail
        self.lookups: list[str] = []
        self.closed = False

    def lookup(self, ip: str) -> GeoLocation:
        self.lookups.append(ip)
        if self.fail:
            raise OSError("database unreadable")
        return self.table.get(ip, GeoLocation())

    def close(self) -> None:
        self.closed = True


# ==============================================================================
# Factories
# ==============================================================================


def raw_event(evt: str = "lifecycle.activate", anon: str = ANON_A, **overrides) -> dict:
    """A client-shaped event as it appears inside a request body."""
    event = {
        "anon": anon,
        "evt": evt,
        "t": BASE_MS,
        "os": "linux",
        "ext": "1.2.3",
        "vscode": "1.90.0",
    }
    event.update(overrides)
    return event


def make_event(
    evt: str = "lifecycle.activate",
    anon: str = ANON_A,
    ts: int = BASE_MS,
    os: str = "linux",
    country: str = "",
    **metadata,
) -> CanonicalEvent:
    """A canonical event with metadata given in client key spelling."""
    return CanonicalEvent(
        anon_id=anon,
        event_name=evt,
        timestamp_ms=ts,
        os=os,
        ext_version="1.2.3",
        host_app_version="1.90.0",
        metadata=EventMetadata.model_validate(metadata),
        geo=GeoLocation(country=country),
    )


def at(day_offset: int = 0, hours: float = 0) -> int:
    """Epoch ms relative to BASE_MS."""
    return BASE_MS + int(timedelta(days=day_offset, hours=hours).total_seconds() * 1000)


def day_of(timestamp_ms: int) -> str:
    return (EPOCH + timedelta(milliseconds=timestamp_ms)).date().isoformat()


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture()
def store():
    """An empty in-memory event store."""
    return FakeEventStore()


@pytest.fixture()
def geo_database():
    """A geo database that knows one public address."""
    return FakeGeoDatabase({"203.0.113.7": GeoLocation(country="DE", region="BE")})


@pytest.fixture()
def settings():
    """Settings built explicitly so the environment cannot leak in.

    Debug endpoints are protected by the key "s3cret" and request bodies
    are capped at 4 KiB.
    """
    return Settings(
        geo=GeoSettings(mmdb=None),
        server=ServerSettings(max_body_bytes=4096),
        stats=StatsSettings(secret="s3cret", window_days=7),
    )


@pytest.fixture()
def client(settings, store, geo_database):
    """A TestClient for an app wired to the in-memory fakes.

    The lifespan is not entered, so nothing tries to reach PostgreSQL or
    open an mmdb file.
    """
    return TestClient(create_app(settings, store=store, geo_database=geo_database))
