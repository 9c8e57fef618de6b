# ==============================================================================
# Tests for the Stats Aggregator
# ==============================================================================
"""
Tests for window resolution, build_stats() and StatsAggregator.compute_stats().
"""

import logging
import time
from datetime import datetime, timezone

import pytest

from conftest import ANON_A, ANON_B, ANON_C, BASE_MS, NOW, FakeEventStore, at, make_event
from telemetry.core.aggregator import (
    StatsAggregator,
    StatsTimeoutError,
    StatsWindow,
    build_stats,
    format_ts,
    parse_day,
    resolve_window,
)
from telemetry.core.models import EPOCH
from telemetry.core.statistics import HISTOGRAM_LABELS


def _build(events, **kwargs) -> StatsWindow:
    return build_stats(events, EPOCH, NOW, NOW, **kwargs)


# ==============================================================================
# Window resolution
# ==============================================================================


class TestResolveWindow:
    """Tests for resolve_window() and date parsing."""

    def test_explicit_window_covers_whole_days(self):
        start, end, explicit = resolve_window("2025-01-10", "2025-01-12", NOW)

        assert explicit is True
        assert start == datetime(2025, 1, 10, tzinfo=timezone.utc)
        assert end == datetime(2025, 1, 13, tzinfo=timezone.utc)

    def test_single_day_window(self):
        start, end, _ = resolve_window("2025-01-15", "2025-01-15", NOW)
        assert (end - start).days == 1

    @pytest.mark.parametrize(
        "date_from,date_to",
        [
            (None, None),
            ("2025-01-10", None),
            (None, "2025-01-10"),
            ("2025-01-12", "2025-01-10"),
            ("10/01/2025", "2025-01-12"),
            ("0001-01-01", "9999-12-30"),
            ("2025-01-01", "9999-12-31"),
        ],
    )
    def test_falls_back_to_all_history(self, date_from, date_to):
        assert resolve_window(date_from, date_to, NOW) == (EPOCH, NOW, False)

    def test_last_representable_day_falls_back(self):
        assert resolve_window("9999-12-30", "9999-12-31", NOW) == (EPOCH, NOW, False)

    def test_range_longer_than_limit_falls_back(self):
        assert resolve_window("2025-01-10", "2025-01-12", NOW, max_range_days=2) == (
            EPOCH,
            NOW,
            False,
        )
        assert resolve_window("2025-01-10", "2025-01-12", NOW, max_range_days=3)[2] is True

    def test_parse_day(self):
        assert parse_day("2025-02-30") is None
        assert parse_day(" 2025-02-28 ").isoformat() == "2025-02-28"

    def test_format_ts(self):
        assert format_ts(datetime(2025, 1, 15, 12, tzinfo=timezone.utc)) == (
            "2025-01-15T12:00:00.000Z"
        )


# ==============================================================================
# build_stats
# ==============================================================================


class TestBuildStatsTotals:
    """Tests for totals, uniques and categorical breakdowns."""

    def test_empty(self):
        stats = _build([])

        assert stats.total == 0
        assert stats.daily.dates == []
        assert stats.durations.hist.labels == list(HISTOGRAM_LABELS)
        assert stats.date_from == stats.date_to == "2025-01-15"

    def test_totals_and_breakdowns(self):
        events = [
            make_event("lifecycle.activate", anon=ANON_A, os="linux"),
            make_event("lifecycle.activate", anon=ANON_A, os="linux", ts=at(hours=0.1)),
            make_event("test.ping", anon=ANON_B, os="win32", ts=at(hours=0.2)),
        ]
        stats = _build(events)

        assert stats.total == 3
        assert stats.uniques == 2
        assert stats.by_event == {"lifecycle.activate": 2, "test.ping": 1}
        assert stats.by_os == {"linux": 2, "win32": 1}
        assert stats.os_types == 2
        assert stats.ext_types == 1
        assert stats.tables.os_top[0].key == "linux"
        assert stats.tables.os_top[0].pct == pytest.approx(2 / 3)

    def test_uniques_never_exceed_total(self):
        events = [make_event(anon=ANON_A, ts=at(hours=i * 0.1)) for i in range(4)]
        stats = _build(events)

        assert stats.uniques <= stats.total
        assert all(u <= h for u, h in zip(stats.daily.uniques, stats.daily.hits))

    def test_events_outside_window_ignored(self):
        events = [make_event(ts=at(-3)), make_event(ts=at(0))]
        start = datetime(2025, 1, 14, tzinfo=timezone.utc)
        stats = build_stats(events, start, NOW, NOW)
        assert stats.total == 1

    def test_no_state_between_calls(self):
        events = [make_event(anon=ANON_A), make_event(anon=ANON_B)]
        first = _build(events)
        second = _build(events)

        assert first.uniques == second.uniques == 2
        assert first.to_json() == second.to_json()


class TestBuildStatsSeries:
    """Tests for daily, hourly and day-of-week series."""

    def test_explicit_window_lists_every_day(self):
        start, end, explicit = resolve_window("2025-01-13", "2025-01-16", NOW)
        events = [make_event(ts=at(-1)), make_event(ts=at(0)), make_event(ts=at(0, 1))]

        stats = build_stats(events, start, end, NOW, explicit=explicit)

        assert stats.daily.dates == ["2025-01-13", "2025-01-14", "2025-01-15", "2025-01-16"]
        assert stats.daily.hits == [0, 1, 2, 0]
        assert stats.date_from == "2025-01-13"
        assert stats.date_to == "2025-01-16"
        assert stats.daily_os.labels == stats.daily.dates
        assert stats.daily_os.series[0].data == [0, 1, 2, 0]

    def test_default_window_runs_to_today(self):
        stats = _build([make_event(ts=at(-2))])
        assert stats.daily.dates == ["2025-01-13", "2025-01-14", "2025-01-15"]

    def test_hourly_and_dow(self):
        # BASE_MS is Wednesday 12:00 UTC
        stats = _build([make_event(anon=ANON_A), make_event(anon=ANON_B, ts=at(hours=0.25))])

        assert stats.hourly[12] == 2
        assert stats.hourly_visitors[12] == 2
        assert sum(stats.hourly) == 2
        assert stats.dow == [0, 0, 0, 2, 0, 0, 0]


class TestBuildStatsRuns:
    """Tests for run lifecycle, errors and durations."""

    def test_durations(self):
        events = [
            make_event("java.run.completed", ts=at(hours=i * 0.01), durationMs=d, exitCode=0)
            for i, d in enumerate([10, 20, 30, 40, 50])
        ]
        stats = _build(events)

        assert stats.durations.count == 5
        assert stats.durations.median == 30
        assert stats.durations.p90 == 50
        assert sum(stats.durations.hist.values) == stats.durations.count

    def test_histogram_bucket(self):
        stats = _build([make_event("java.run.completed", durationMs=1500)])
        assert stats.durations.hist.values[2] == 1

    def test_average_wait(self):
        events = [
            make_event("java.run.completed", durationMs=100, waitMsTotal=10),
            make_event("java.run.completed", durationMs=100, waitMsTotal=30, ts=at(hours=0.1)),
            make_event("java.run.completed", waitMsTotal=999, ts=at(hours=0.2)),
        ]
        assert _build(events).durations.avg_wait_ms == 20

    def test_error_phases(self):
        events = [
            make_event("java.run.started"),
            make_event("java.run.started", ts=at(hours=0.1)),
            make_event("java.run.error", errorPhase="compile", ts=at(hours=0.2)),
            make_event("java.run.error", errorPhase="runtime", ts=at(hours=0.3)),
            make_event("java.run.error", ts=at(hours=0.4)),
        ]
        stats = _build(events)

        assert stats.runs.started == 2
        assert stats.errors.compile == 1
        assert stats.errors.runtime == 1
        assert stats.errors.compile_rate == 0.5

    def test_rates_without_runs(self):
        stats = _build([make_event("java.run.error", errorPhase="compile")])
        assert stats.errors.compile_rate == 1
        assert stats.interactive_rate == 0

    def test_exit_codes_and_buckets(self):
        events = [
            make_event("java.run.completed", exitCode=0, outputBytesBucket="0-1k"),
            make_event("java.run.completed", exitCode=1, ts=at(hours=0.1)),
            make_event("java.run.completed", ts=at(hours=0.2)),
        ]
        stats = _build(events)

        assert stats.exit_codes == {"0": 2, "1": 1}
        assert stats.output_buckets == {"-": 2, "0-1k": 1}
        assert stats.daily_learning_outcomes == {"2025-01-15": {"0": 2, "1": 1}}
        assert stats.tables.exit_top[0].pct == pytest.approx(2 / 3)

    def test_interactive_and_truncation_rates(self):
        events = [
            make_event("java.run.completed", scannerUsage=True, truncatedOutput=True),
            make_event("java.run.completed", scannerUsage=False, ts=at(hours=0.1)),
        ]
        stats = _build(events)

        assert stats.interactive_rate == 0.5
        assert stats.truncation_rate == 0.5

    def test_top_exceptions(self):
        events = [
            make_event("java.run.error", exceptionHash="h1", ts=at(hours=0.1)),
            make_event("java.run.error", exceptionHash="h1", ts=at(hours=0.2)),
            make_event("java.run.error", exceptionHash="h2", ts=at(hours=0.3)),
            make_event("error.unhandled", exceptionHash="h3", ts=at(hours=0.4)),
        ]
        stats = _build(events)

        assert stats.top_exceptions == {"h1": 2, "h2": 1}
        assert stats.tables.exceptions_top[0].key == "h1"

    def test_installs(self):
        events = [make_event("install.created"), make_event("install.created", anon=ANON_B)]
        stats = _build(events, installs_total=10)

        assert stats.installs_window == 2
        assert stats.installs_total == 10


class TestBuildStatsGeo:
    """Tests for the country and continent rollup."""

    def test_rollup(self):
        events = [
            make_event(anon=ANON_A, country="DE"),
            make_event(anon=ANON_A, country="DE", ts=at(hours=0.1)),
            make_event(anon=ANON_B, country="FR", ts=at(hours=0.2)),
            make_event(anon=ANON_C, country="US", ts=at(hours=0.3)),
            make_event(anon=ANON_C, ts=at(hours=0.4)),
        ]
        stats = _build(events)
        geo = stats.to_json()["geo"]

        assert geo["byCountry"]["DE"] == {"hits": 2, "visitors": 1}
        assert geo["byCountry"]["Unknown"] == {"hits": 1, "visitors": 1}
        assert geo["byContinent"]["EU"] == {"hits": 3, "visitors": 2}
        assert geo["byContinent"]["NA"] == {"hits": 1, "visitors": 1}
        assert geo["byContinent"]["Unknown"] == {"hits": 1, "visitors": 1}

    def test_continent_visitors_sum_countries(self):
        """A visitor seen in two countries counts once per country."""
        events = [
            make_event(anon=ANON_A, country="DE"),
            make_event(anon=ANON_A, country="FR", ts=at(hours=0.1)),
        ]
        stats = _build(events)

        assert stats.uniques == 1
        assert stats.geo.by_continent["EU"].visitors == 2


class TestBuildStatsSessions:
    """Tests for sessions shown in the stats window."""

    def test_recent_sessions(self):
        events = [
            make_event("java.run.started", anon=ANON_C, sessionId="s1"),
            make_event(
                "java.run.completed",
                anon=ANON_C,
                sessionId="s1",
                exitCode=0,
                durationMs=800,
                ts=at(hours=0.01),
            ),
        ]
        stats = _build(events)
        session = stats.to_json()["sessionsRecent"][0]

        assert session["id"] == "s1"
        assert session["visitor"] == "Visitor #abcdef"
        assert session["completed"] is True
        assert session["exit"] == 0
        assert session["durationMs"] == 800
        assert session["startedAt"] == "2025-01-15T12:00:00.000Z"

    def test_active_sessions_from_recent_events(self):
        recent = [
            make_event("java.run.started", sessionId="live", ts=at(hours=0.45)),
            make_event("java.run.started", sessionId="stale", ts=at(hours=0.1)),
        ]
        stats = _build([], recent_events=recent)
        assert stats.active_sessions == 1

    def test_ranked_runs(self):
        events = [
            make_event("java.run.completed", exitCode=0, durationMs=100, scannerUsage=True),
            make_event(
                "java.run.completed", exitCode=0, durationMs=900, scannerUsage=True, ts=at(0, 0.1)
            ),
            make_event("java.run.completed", exitCode=0, durationMs=5000, ts=at(0, 0.2)),
            make_event("java.run.completed", exitCode=130, durationMs=300, ts=at(0, 0.3)),
            make_event(
                "java.run.completed", exitCode=130, durationMs=50, scannerUsage=False, ts=at(0, 0.4)
            ),
        ]
        ranked = _build(events).sessions

        assert [r.duration_ms for r in ranked.success_top] == [900, 100, 5000]
        assert [r.duration_ms for r in ranked.frustrated_top] == [50, 300]
        assert ranked.success_top[0].interactive is True


class TestStatsJson:
    """Tests for the serialized shape."""

    def test_camel_case_keys(self):
        payload = _build([make_event()], window_days=7).to_json()

        for key in (
            "from",
            "to",
            "windowDays",
            "osTypes",
            "dailyOs",
            "byEvent",
            "hourlyVisitors",
            "exitCodes",
            "interactiveRate",
            "activeSessions",
            "installsTotal",
            "dailyLearningOutcomes",
        ):
            assert key in payload
        assert "successTop" in payload["sessions"]
        assert "eventsTop" in payload["tables"]
        assert "avgWaitMs" in payload["durations"]


# ==============================================================================
# StatsAggregator
# ==============================================================================


class TestStatsAggregator:
    """Tests for compute_stats() against a store."""

    def test_reads_store(self):
        store = FakeEventStore(
            [make_event(ts=at(-1)), make_event("install.created", anon=ANON_B)]
        )
        stats = StatsAggregator(store).compute_stats(now=NOW)

        assert stats.total == 2
        assert stats.installs_total == 1
        assert stats.window_days == 7

    def test_explicit_window(self):
        store = FakeEventStore([make_event(ts=at(-5)), make_event(ts=at(0))])
        stats = StatsAggregator(store).compute_stats("2025-01-15", "2025-01-15", now=NOW)

        assert stats.total == 1
        assert stats.daily.dates == ["2025-01-15"]

    def test_store_failure_returns_zero_window(self, caplog):
        store = FakeEventStore([make_event()])
        store.fail_reads = True

        with caplog.at_level(logging.ERROR, logger="telemetry.core.aggregator"):
            stats = StatsAggregator(store, window_days=30).compute_stats(now=NOW)

        assert stats.total == 0
        assert stats.window_days == 30
        assert stats.hourly == [0] * 24
        assert stats.dow == [0] * 7
        assert stats.durations.hist.values == [0] * len(HISTOGRAM_LABELS)
        assert "Stats query failed" in caplog.text

    def test_no_store(self):
        stats = StatsAggregator(None).compute_stats(now=NOW)
        assert stats.to_json()["from"] == "2025-01-15"
        assert stats.total == 0

    def test_uniques_grow_with_window(self):
        """Widening the window never lowers the distinct visitor count."""
        store = FakeEventStore(
            [
                make_event(anon=ANON_A, ts=at(-3)),
                make_event(anon=ANON_B, ts=at(-2)),
                make_event(anon=ANON_A, ts=at(-1)),
                make_event(anon=ANON_C, ts=at(0)),
            ]
        )
        aggregator = StatsAggregator(store)
        counts = [
            aggregator.compute_stats(first, "2025-01-15", now=NOW).uniques
            for first in ("2025-01-15", "2025-01-14", "2025-01-13", "2025-01-12")
        ]

        assert counts == [1, 2, 3, 3]
        assert counts == sorted(counts)

    def test_window_days_override(self):
        stats = StatsAggregator(FakeEventStore()).compute_stats(window_days=14, now=NOW)
        assert stats.window_days == 14

    def test_base_timestamp(self):
        assert make_event().event_time == datetime(2025, 1, 15, 12, tzinfo=timezone.utc)
        assert make_event().timestamp_ms == BASE_MS

    def test_unrepresentable_range_serves_all_history(self):
        store = FakeEventStore([make_event(ts=at(-1)), make_event()])
        stats = StatsAggregator(store).compute_stats("2025-01-01", "9999-12-31", now=NOW)

        assert stats.total == 2
        assert stats.daily.dates == ["2025-01-14", "2025-01-15"]

    def test_huge_range_keeps_day_axis_bounded(self):
        store = FakeEventStore([make_event()])
        stats = StatsAggregator(store).compute_stats("0001-01-01", "9999-12-30", now=NOW)

        assert stats.total == 1
        assert stats.daily.dates == ["2025-01-15"]
        assert len(stats.daily_os.series[0].data) == 1


class TestStatsDeadline:
    """Tests for abandoning slow stats computations."""

    def test_fold_past_deadline_raises(self):
        with pytest.raises(StatsTimeoutError):
            _build([make_event()], deadline=time.monotonic() - 1)

    def test_fold_within_deadline(self):
        stats = _build([make_event()], deadline=time.monotonic() + 60)
        assert stats.total == 1

    def test_slow_store_read_returns_zero_window(self, caplog):
        store = FakeEventStore([make_event(), make_event(anon=ANON_B)])
        store.read_delay = 0.05

        with caplog.at_level(logging.WARNING, logger="telemetry.core.aggregator"):
            stats = StatsAggregator(store, timeout_ms=10).compute_stats(now=NOW)

        assert stats.total == 0
        assert stats.uniques == 0
        assert stats.hourly == [0] * 24
        assert stats.durations.hist.values == [0] * len(HISTOGRAM_LABELS)
        assert "exceeded 10 ms" in caplog.text
