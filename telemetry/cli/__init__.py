# ==============================================================================
# CLI Commands Module
# ==============================================================================
"""
CLI commands for the telemetry service.

Commands are organized into separate modules for maintainability:
- shared.py: Common constants, box drawing and formatting helpers
- analytics.py: stats command
- config.py: config show
- db.py: db init / reset / status
- server.py: serve command
"""

from telemetry.cli.shared import (
    BOX_WIDTH,
    B,
    Box,
    C,
    Colors,
    I,
    Icons,
)

__all__ = [
    "BOX_WIDTH",
    "B",
    "Box",
    "C",
    "Colors",
    "I",
    "Icons",
]
