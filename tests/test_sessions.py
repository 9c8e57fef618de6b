# ==============================================================================
# Tests for Session Reconstruction
# ==============================================================================
"""
Tests for SessionReconstructor: grouping by session id, completion folding,
interactivity, and the active-session count.
"""

from conftest import ANON_A, ANON_B, BASE_MS, make_event
from telemetry.core.models import SessionState
from telemetry.core.sessions import SessionReconstructor

MINUTE_MS = 60 * 1000


class TestProcessEvents:
    """Tests for folding events into sessions."""

    def test_groups_by_session_id(self):
        events = [
            make_event("java.run.started", ts=BASE_MS, sessionId="s1"),
            make_event("java.run.started", anon=ANON_B, ts=BASE_MS + 5, sessionId="s2"),
            make_event("java.run.completed", ts=BASE_MS + 900, sessionId="s1", exitCode=0),
        ]
        sessions = SessionReconstructor().process_events(events)

        assert set(sessions) == {"s1", "s2"}
        assert sessions["s1"].completed is True
        assert sessions["s2"].completed is False
        assert sessions["s2"].anon_id == ANON_B

    def test_events_without_session_ignored(self):
        sessions = SessionReconstructor().process_events([make_event("java.run.started")])
        assert sessions == {}

    def test_out_of_order_events(self):
        events = [
            make_event("java.run.completed", ts=BASE_MS + 3000, sessionId="s1", durationMs=2500),
            make_event("java.run.started", ts=BASE_MS, sessionId="s1"),
        ]
        session = SessionReconstructor().process_events(events)["s1"]

        assert session.started_at == BASE_MS
        assert session.last_at == BASE_MS + 3000
        assert session.duration_ms == 2500

    def test_completion_fields(self):
        events = [
            make_event("java.run.started", ts=BASE_MS, sessionId="s1"),
            make_event(
                "java.run.completed",
                ts=BASE_MS + 10,
                sessionId="s1",
                exitCode=130,
                durationMs=42,
                scannerUsage=True,
            ),
        ]
        session = SessionReconstructor().process_events(events)["s1"]

        assert session.exit_code == 130
        assert session.duration_ms == 42
        assert session.interactive is True

    def test_interactive_from_earlier_event(self):
        events = [
            make_event("java.run.started", ts=BASE_MS, sessionId="s1", scannerUsage=False),
            make_event("java.run.completed", ts=BASE_MS + 10, sessionId="s1", exitCode=0),
        ]
        session = SessionReconstructor().process_events(events)["s1"]
        assert session.interactive is False


class TestSessionState:
    """Tests for state inference and the active count."""

    def test_states(self):
        reconstructor = SessionReconstructor(activity_minutes=10)
        threshold = reconstructor.activity_threshold_ms
        started = make_event("java.run.started", ts=BASE_MS, sessionId="s1")
        session = reconstructor.process_events([started])["s1"]

        assert session.state(BASE_MS + 5 * MINUTE_MS, threshold) == SessionState.ACTIVE
        assert session.state(BASE_MS + 11 * MINUTE_MS, threshold) == SessionState.STARTED

        session.completed = True
        assert session.state(BASE_MS, threshold) == SessionState.COMPLETED

    def test_stale_started_session_not_active(self):
        """A started-only session older than the threshold is not counted."""
        events = [make_event("java.run.started", ts=BASE_MS, sessionId="s1")]
        reconstructor = SessionReconstructor(activity_minutes=10)

        assert reconstructor.count_active(events, BASE_MS + 2 * MINUTE_MS) == 1
        assert reconstructor.count_active(events, BASE_MS + 30 * MINUTE_MS) == 0

    def test_completed_session_not_active(self):
        events = [
            make_event("java.run.started", ts=BASE_MS, sessionId="s1"),
            make_event("java.run.completed", ts=BASE_MS + 1, sessionId="s1", exitCode=0),
        ]
        assert SessionReconstructor().count_active(events, BASE_MS + MINUTE_MS) == 0

    def test_most_recent(self):
        events = [
            make_event("java.run.started", anon=ANON_A, ts=BASE_MS, sessionId="old"),
            make_event("java.run.started", anon=ANON_B, ts=BASE_MS + 50, sessionId="new"),
        ]
        sessions = SessionReconstructor().process_events(events)
        recent = SessionReconstructor.most_recent(sessions.values(), 1)

        assert [s.session_id for s in recent] == ["new"]
