# ==============================================================================
# Geo Database Adapters
# ==============================================================================
"""
Geo database adapters implementing base/geo.py.

Currently supported:
- MaxMind GeoLite2 (maxmind.py)
"""

from telemetry.infrastructure.geo.maxmind import MaxMindGeoDatabase, open_geo_database

__all__ = [
    "MaxMindGeoDatabase",
    "open_geo_database",
]
