# ==============================================================================
# Repository Abstract Base Classes
# ==============================================================================
"""
Repository ABC for telemetry event persistence.

Defines the "what" (append and read events) not the "how" (SQL, pooling).
Concrete implementations in infrastructure/ handle the specifics.

Includes:
- EventStore: append-only event log with time-range reads
- StoreUnavailableError: raised when the backing store cannot be reached

Events are only ever appended. Nothing in the service updates or deletes a
stored event; sessions and aggregates are derived on read.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from telemetry.core.models import CanonicalEvent

RECENT_LIMIT_MIN = 1
RECENT_LIMIT_MAX = 500


class StoreUnavailableError(RuntimeError):
    """The event store is not configured or cannot be reached in time."""


def clamp_recent_limit(limit: int) -> int:
    """Clamp a requested row count for recent() into 1..500."""
    return max(RECENT_LIMIT_MIN, min(RECENT_LIMIT_MAX, int(limit)))


class EventStore(ABC):
    """Append-only store of canonical events."""

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to the data store."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close connection and release resources."""
        ...

    @abstractmethod
    def initialize(self) -> None:
        """Create the event table and indexes if missing. Idempotent."""
        ...

    @abstractmethod
    def append(self, event: CanonicalEvent) -> None:
        """
        Durably persist one event.

        Args:
            event: Validated, geo-enriched event

        Raises:
            StoreUnavailableError: If the store cannot be reached
        """
        ...

    @abstractmethod
    def fetch_events(self, start: datetime, end: datetime) -> list[CanonicalEvent]:
        """
        Read all events with start <= t < end.

        Args:
            start: Inclusive lower bound (aware UTC)
            end: Exclusive upper bound (aware UTC)

        Returns:
            Events in the range, oldest first
        """
        ...

    @abstractmethod
    def fetch_events_since(self, since: datetime) -> list[CanonicalEvent]:
        """Read all events with t >= since, oldest first."""
        ...

    @abstractmethod
    def count_events(
        self,
        event_name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        """
        Count events with a given name, optionally within [start, end).

        Args:
            event_name: Exact event name
            start: Inclusive lower bound, or None for no bound
            end: Exclusive upper bound, or None for no bound

        Returns:
            Matching row count
        """
        ...

    @abstractmethod
    def recent(self, limit: int = 100) -> list[dict]:
        """
        Newest stored rows, newest first, for debugging.

        Args:
            limit: Requested row count, clamped to 1..500

        Returns:
            Row dictionaries as stored
        """
        ...

    @abstractmethod
    def counts_since(self, since: datetime) -> list[dict]:
        """
        Per event-name counts for t >= since.

        Returns:
            List of {"evt": name, "count": n}, largest count first
        """
        ...

    @abstractmethod
    def health(self) -> tuple[bool, str]:
        """
        Check the store is reachable.

        Returns:
            Tuple of (ok, detail message)
        """
        ...
