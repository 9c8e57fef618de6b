# ==============================================================================
# Core Domain Logic
# ==============================================================================
"""
Pure domain logic with no I/O.

This module contains:
- Domain models (CanonicalEvent, EventMetadata, Session, EventName)
- Event normalization and validation
- Continent mapping and geo resolution
- Session reconstruction and stats aggregation

The ingestion pipeline lives in telemetry.core.pipeline; it depends on the
store port in telemetry.base and is imported from there directly.
"""

from telemetry.core.aggregator import StatsAggregator, StatsWindow, build_stats
from telemetry.core.continents import continent_of
from telemetry.core.geo_resolver import GeoResolver, pick_client_ip
from telemetry.core.models import (
    CanonicalEvent,
    EventMetadata,
    EventName,
    GeoLocation,
    Session,
    SessionState,
)
from telemetry.core.sessions import SessionReconstructor
from telemetry.core.validation import normalize_event, validate_envelope, validate_event

__all__ = [
    "CanonicalEvent",
    "EventMetadata",
    "EventName",
    "GeoLocation",
    "GeoResolver",
    "Session",
    "SessionReconstructor",
    "SessionState",
    "StatsAggregator",
    "StatsWindow",
    "build_stats",
    "continent_of",
    "normalize_event",
    "pick_client_ip",
    "validate_envelope",
    "validate_event",
]
