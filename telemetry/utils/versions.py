# ==============================================================================
# Version Utilities
# ==============================================================================
"""
Utilities for retrieving package versions.
"""

from importlib.metadata import version, PackageNotFoundError


def get_telemetry_version() -> str:
    """
    Get the jwc-telemetry package version.

    Returns:
        Version string (e.g., "0.1.0")
    """
    try:
        return version("jwc-telemetry")
    except PackageNotFoundError:
        return "0.1.0"
