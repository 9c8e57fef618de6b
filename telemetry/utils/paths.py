# ==============================================================================
# Path Constants and Utilities
# ==============================================================================
"""
Centralized project paths.

The schema template ships inside the package so that an installed copy can
initialize a database without a source checkout.
"""

from pathlib import Path


def get_package_root() -> Path:
    """Get the directory of the telemetry package."""
    return Path(__file__).resolve().parent.parent  # utils/paths.py -> telemetry


def get_schema_dir() -> Path:
    """
    Get the schema directory containing SQL templates.

    Returns:
        Path to the schema directory
    """
    return get_package_root() / "schema"


def get_init_sql_path() -> Path:
    """
    Get the path to the database initialization SQL template.

    Returns:
        Path to init.sql
    """
    return get_schema_dir() / "init.sql"
