# ==============================================================================
# Session Reconstruction - Pure Domain Logic
# ==============================================================================
"""
Rebuilds run sessions from the raw event stream.

Sessions are never persisted. Every stats query groups the events it read by
metadata.sessionId and folds each group into a Session:
- started_at / last_at are the min / max event timestamps
- completed is set once any run-completed event is seen
- exit code and duration come from the completion event
- interactive comes from the completion event, else from any event that
  reported scannerUsage

Events without a session id are not part of any session.
"""

from collections.abc import Iterable

from telemetry.core.models import CanonicalEvent, EventName, Session, SessionState

DEFAULT_ACTIVITY_MINUTES = 10


class SessionReconstructor:
    """
    Pure session folding logic.

    Holds configuration only; every call works on fresh state, so one
    instance can be shared across concurrent requests.
    """

    def __init__(self, activity_minutes: int = DEFAULT_ACTIVITY_MINUTES):
        """
        Initialize the reconstructor.

        Args:
            activity_minutes: A session whose latest event is within this
                              many minutes of "now" and that has not
                              completed counts as active.
        """
        self.activity_threshold_ms = activity_minutes * 60 * 1000

    def create_session(self, event: CanonicalEvent) -> Session:
        """Start a session from its first observed event."""
        return Session(
            session_id=event.session_id,
            anon_id=event.anon_id,
            started_at=event.timestamp_ms,
            last_at=event.timestamp_ms,
        )

    def update_session(self, session: Session, event: CanonicalEvent) -> Session:
        """
        Fold one event into a session.

        Mutates the session in place and returns it. Events are expected in
        timestamp order so the latest completion event wins.
        """
        ts = event.timestamp_ms
        session.started_at = min(session.started_at, ts)
        session.last_at = max(session.last_at, ts)

        interactive = event.metadata.scanner_usage
        if event.event_name == EventName.RUN_COMPLETED:
            session.completed = True
            session.exit_code = event.metadata.exit_code
            session.duration_ms = event.metadata.duration_ms
            if interactive is not None:
                session.interactive = interactive
        elif session.interactive is None and interactive is not None:
            session.interactive = interactive

        return session

    def process_events(self, events: Iterable[CanonicalEvent]) -> dict[str, Session]:
        """
        Group events by session id and fold each group.

        Args:
            events: Events in any order

        Returns:
            Dict mapping session_id to Session
        """
        sessions: dict[str, Session] = {}
        for event in sorted(events, key=lambda e: e.timestamp_ms):
            session_id = event.session_id
            if not session_id:
                continue
            current = sessions.get(session_id)
            if current is None:
                current = self.create_session(event)
                sessions[session_id] = current
            self.update_session(current, event)
        return sessions

    def count_active(self, events: Iterable[CanonicalEvent], now_ms: int) -> int:
        """
        Count sessions that look like they are still running.

        Args:
            events: Events from the short look-back before now
            now_ms: Current time in epoch milliseconds

        Returns:
            Number of sessions with recent activity and no completion
        """
        sessions = self.process_events(events)
        return sum(
            1
            for session in sessions.values()
            if session.state(now_ms, self.activity_threshold_ms) == SessionState.ACTIVE
        )

    @staticmethod
    def most_recent(sessions: Iterable[Session], limit: int) -> list[Session]:
        """Sessions ordered by last activity, newest first."""
        return sorted(sessions, key=lambda s: (-s.last_at, s.session_id))[:limit]
