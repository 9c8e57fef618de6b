# ==============================================================================
# Geo Resolver
# ==============================================================================
"""
Derives {country, region} for an ingest request.

Precedence, first match wins:
1. Geography claimed by an upstream proxy/CDN header (trusted verbatim)
2. Local geo database lookup on the best client IP
3. Empty strings

The best client IP is the first non-private candidate among the forwarding
headers and the transport peer. If every candidate is private, the first
candidate is used as-is.
"""

import ipaddress
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Optional

from telemetry.core.models import GeoLocation

if TYPE_CHECKING:
    from telemetry.base.geo import GeoDatabase

logger = logging.getLogger(__name__)

PROVIDER_COUNTRY_HEADERS = (
    "cf-ipcountry",
    "x-geo-country",
    "x-country-code",
    "x-appengine-country",
    "fastly-country-code",
)

PROVIDER_REGION_HEADERS = (
    "cf-region-code",
    "x-geo-region",
    "x-appengine-region",
    "x-region",
)

# Single-address headers, checked before X-Forwarded-For
CLIENT_IP_HEADERS = ("cf-connecting-ip", "x-client-ip", "x-real-ip")

PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(net)
    for net in (
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "::1/128",
        "fe80::/10",
        "fc00::/7",
    )
)


# ==============================================================================
# Request Signals
# ==============================================================================


def _lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {str(k).lower(): str(v) for k, v in headers.items()}


def _first_header(headers: dict[str, str], names: tuple[str, ...]) -> str:
    for name in names:
        value = headers.get(name, "").strip()
        if value:
            return value.upper()
    return ""


def extract_geo_from_headers(headers: Mapping[str, str]) -> Optional[GeoLocation]:
    """
    Read provider-supplied geography.

    Args:
        headers: Request headers (any case)

    Returns:
        GeoLocation if a country header is present, otherwise None. A region
        header without a country header is ignored.
    """
    lowered = _lower_headers(headers)
    country = _first_header(lowered, PROVIDER_COUNTRY_HEADERS)
    if not country:
        return None
    return GeoLocation(country=country, region=_first_header(lowered, PROVIDER_REGION_HEADERS))


def parse_ip(candidate: Optional[str]):
    """
    Parse an IP candidate, stripping brackets and ports.

    Handles "1.2.3.4", "1.2.3.4:5678", "::1", "[::1]" and "[::1]:80".

    Returns:
        ipaddress.IPv4Address / IPv6Address, or None if not an IP
    """
    if not candidate:
        return None
    text = candidate.strip()
    if text.startswith("["):
        text = text[1:].split("]", 1)[0]
    elif text.count(":") == 1:
        text = text.split(":", 1)[0]
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def is_private_ip(candidate: Optional[str]) -> bool:
    """
    Check whether an address is private, loopback or link-local.

    Unparseable strings count as private so they are never chosen as the
    public candidate.
    """
    addr = parse_ip(candidate)
    if addr is None:
        return True
    mapped = getattr(addr, "ipv4_mapped", None)
    if mapped is not None:
        addr = mapped
    return any(addr.version == net.version and addr in net for net in PRIVATE_NETWORKS)


def parse_forwarded_for(value: Optional[str]) -> list[str]:
    """Split an X-Forwarded-For value into its non-empty hops, client first."""
    if not value:
        return []
    return [hop.strip() for hop in value.split(",") if hop.strip()]


def client_ip_candidates(headers: Mapping[str, str], peer_ip: Optional[str]) -> list[str]:
    """List candidate client IPs in priority order."""
    lowered = _lower_headers(headers)
    candidates = [
        lowered[name].strip() for name in CLIENT_IP_HEADERS if lowered.get(name, "").strip()
    ]
    candidates.extend(parse_forwarded_for(lowered.get("x-forwarded-for")))
    if peer_ip:
        candidates.append(peer_ip)
    return candidates


def pick_client_ip(headers: Mapping[str, str], peer_ip: Optional[str]) -> str:
    """
    Choose the best client IP for a request.

    Args:
        headers: Request headers (any case)
        peer_ip: Transport-level peer address

    Returns:
        First public candidate (port stripped); otherwise the first candidate;
        otherwise the peer address or "".
    """
    candidates = client_ip_candidates(headers, peer_ip)
    for candidate in candidates:
        if not is_private_ip(candidate):
            return str(parse_ip(candidate))
    if candidates:
        first = parse_ip(candidates[0])
        return str(first) if first is not None else candidates[0]
    return peer_ip or ""


# ==============================================================================
# Resolver
# ==============================================================================


class GeoResolver:
    """
    Resolves request geography using provider headers and a geo database.

    The database handle is opened once per process and shared by every
    request; the resolver itself holds no mutable state.
    """

    def __init__(self, geo_database: Optional["GeoDatabase"] = None):
        """
        Initialize the resolver.

        Args:
            geo_database: Opened geo database, or None when unavailable
        """
        self.geo_database = geo_database

    def resolve(self, headers: Mapping[str, str], peer_ip: Optional[str]) -> GeoLocation:
        """
        Resolve {country, region} for one request.

        Args:
            headers: Request headers
            peer_ip: Transport-level peer address

        Returns:
            GeoLocation; fields are "" when unknown, never None
        """
        claimed = extract_geo_from_headers(headers)
        if claimed is not None:
            return claimed

        if self.geo_database is None:
            return GeoLocation()

        ip = pick_client_ip(headers, peer_ip)
        if not ip:
            return GeoLocation()
        try:
            return self.geo_database.lookup(ip)
        except Exception as e:
            logger.warning("Geo lookup failed for %s: %s", ip, e)
            return GeoLocation()
