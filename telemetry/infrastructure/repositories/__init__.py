# ==============================================================================
# Database Repository Adapters
# ==============================================================================
"""
Database adapters implementing the repository interfaces from base/repositories.py.

Currently supported:
- PostgreSQL (postgresql.py)
"""

from telemetry.infrastructure.repositories.postgresql import PostgreSQLEventStore

__all__ = [
    "PostgreSQLEventStore",
]
