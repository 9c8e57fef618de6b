# ==============================================================================
# Telemetry Utilities
# ==============================================================================
"""
Shared utilities for the telemetry service.

This module exports configuration and database helpers.
"""

from telemetry.utils.config import (
    GeoSettings,
    PostgresSettings,
    ServerSettings,
    Settings,
    StatsSettings,
    get_settings,
)
from telemetry.utils.db import (
    check_db_connection,
    ensure_schema,
    reset_schema,
)

__all__ = [
    # Config
    "GeoSettings",
    "PostgresSettings",
    "ServerSettings",
    "Settings",
    "StatsSettings",
    "get_settings",
    # Database
    "check_db_connection",
    "ensure_schema",
    "reset_schema",
]
