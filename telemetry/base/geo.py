# ==============================================================================
# Geo Database Abstract Base Class
# ==============================================================================
"""
Port for IP address to geography lookups.

Implementations are opened once per process and shared read-only by every
request, so lookup() must be safe to call concurrently.

Implementations: MaxMindGeoDatabase
"""

from abc import ABC, abstractmethod

from telemetry.core.models import GeoLocation


class GeoDatabase(ABC):
    """Read-only IP geolocation database."""

    @abstractmethod
    def lookup(self, ip: str) -> GeoLocation:
        """
        Resolve an IP address.

        Args:
            ip: IPv4 or IPv6 address in text form

        Returns:
            GeoLocation with uppercased codes; empty strings when unknown.
            Never raises for unresolvable or malformed addresses.
        """
        ...

    def close(self) -> None:
        """Release the underlying database handle. Optional override."""
        pass
