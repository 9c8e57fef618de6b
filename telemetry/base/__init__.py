# ==============================================================================
# Base Abstractions
# ==============================================================================
"""
Abstract ports implemented by infrastructure adapters.

- EventStore: append-only event persistence
- GeoDatabase: IP to country/region lookup
"""

from telemetry.base.geo import GeoDatabase
from telemetry.base.repositories import (
    EventStore,
    StoreUnavailableError,
    clamp_recent_limit,
)

__all__ = [
    "EventStore",
    "GeoDatabase",
    "StoreUnavailableError",
    "clamp_recent_limit",
]
