# ==============================================================================
# MaxMind Geo Database
# ==============================================================================
"""
GeoDatabase implementation backed by a MaxMind GeoLite2 .mmdb file.

The database is opened once at startup and shared read-only by every request.
Both the Country and City editions are supported; the region is taken from
the first subdivision, which only the City edition carries.
"""

import logging
from pathlib import Path
from typing import Optional

import maxminddb

from telemetry.base.geo import GeoDatabase
from telemetry.core.models import GeoLocation
from telemetry.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)


def _iso_code(record: dict, key: str) -> str:
    section = record.get(key) or {}
    return str(section.get("iso_code") or "").upper()


class MaxMindGeoDatabase(GeoDatabase):
    """Read-only lookups against an opened .mmdb reader."""

    def __init__(self, path: Path):
        """
        Open the database file.

        Args:
            path: Path to a GeoLite2 Country or City .mmdb file

        Raises:
            FileNotFoundError: If the file does not exist
            maxminddb.InvalidDatabaseError: If the file is not a MaxMind database
        """
        self.path = Path(path)
        self._reader = maxminddb.open_database(str(self.path))
        logger.info(
            "Opened geo database %s (%s)", self.path, self._reader.metadata().database_type
        )

    def lookup(self, ip: str) -> GeoLocation:
        """Resolve an IP address; unknown or malformed addresses give empty strings."""
        try:
            record = self._reader.get(ip)
        except ValueError as e:
            logger.debug("Geo lookup skipped for %r: %s", ip, e)
            return GeoLocation()
        if not isinstance(record, dict):
            return GeoLocation()

        country = _iso_code(record, "country") or _iso_code(record, "registered_country")
        subdivisions = record.get("subdivisions") or []
        region = ""
        if subdivisions and isinstance(subdivisions[0], dict):
            region = str(subdivisions[0].get("iso_code") or "").upper()
        return GeoLocation(country=country, region=region)

    def close(self) -> None:
        self._reader.close()


def open_geo_database(settings: Settings | None = None) -> Optional[MaxMindGeoDatabase]:
    """
    Open the configured geo database, degrading to None on any failure.

    A missing or unreadable database never stops the service; lookups then
    resolve to empty country/region.
    """
    settings = settings or get_settings()
    path = settings.geo.mmdb
    if path is None:
        logger.info("No geo database configured (GEO_MMDB); geo lookups disabled")
        return None
    try:
        return MaxMindGeoDatabase(path)
    except (OSError, maxminddb.InvalidDatabaseError) as e:
        logger.warning("Could not open geo database %s: %s", path, e)
        return None
