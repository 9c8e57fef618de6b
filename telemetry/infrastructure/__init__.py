# ==============================================================================
# Infrastructure Adapters
# ==============================================================================
"""
Adapters for external services (ports-and-adapters architecture).

This module contains concrete implementations of the ports in base/:
- repositories/ - Event store adapters (PostgreSQL)
- geo/ - IP geolocation adapters (MaxMind)
"""

from telemetry.infrastructure.geo import MaxMindGeoDatabase, open_geo_database
from telemetry.infrastructure.repositories import PostgreSQLEventStore

__all__ = [
    # Geo
    "MaxMindGeoDatabase",
    "open_geo_database",
    # Repositories
    "PostgreSQLEventStore",
]
