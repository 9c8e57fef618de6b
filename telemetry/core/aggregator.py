# ==============================================================================
# Analytics Aggregator
# ==============================================================================
"""
Computes the dashboard StatsWindow for a time window.

The aggregator reads the raw events in the window from the EventStore and
folds them in a single pass per metric family:
- totals and unique visitors
- categorical breakdowns (event, OS, extension, host app version)
- daily, hourly and day-of-week series
- run lifecycle counts and error phase split
- duration percentiles, histogram and average wait
- exit code / output bucket distributions and usage rates
- geographic rollup by country and continent
- session reconstruction, active sessions and ranked runs

Every uniqueness set is created inside build_stats(), so nothing carries over
between calls. If the store cannot be read, or reading and folding run past
the configured deadline, compute_stats() returns a zero-valued but
structurally complete StatsWindow.

Note that continent visitor counts are the sum of per-country distinct
visitors. A visitor seen under two countries in the window is counted once
per country, so continent totals can exceed the true global distinct count.
"""

import logging
from collections import Counter, defaultdict
from datetime import date, datetime, time, timedelta, timezone
from time import monotonic
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from telemetry.core.continents import continent_of
from telemetry.core.models import EPOCH, CanonicalEvent, EventName
from telemetry.core.sessions import DEFAULT_ACTIVITY_MINUTES, SessionReconstructor
from telemetry.core.statistics import (
    HISTOGRAM_LABELS,
    duration_histogram,
    mask_visitor,
    percentile,
    ranked,
    safe_rate,
    top_rows,
)

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 7
DEFAULT_TOP_N = 20
DEFAULT_RECENT_SESSIONS = 100
RANKED_RUNS_LIMIT = 20
TOP_EXCEPTIONS_LIMIT = 50
MAX_RANGE_DAYS = 3660
DEFAULT_TIMEOUT_MS = 20000

# Events folded between deadline checks
DEADLINE_CHECK_EVERY = 1024

UNKNOWN_KEY = "Unknown"
MISSING_EXIT_KEY = "0"
MISSING_BUCKET_KEY = "-"
COMPILE_PHASE = "compile"
DATE_FORMAT = "%Y-%m-%d"


# ==============================================================================
# Result Models
# ==============================================================================


class CamelModel(BaseModel):
    """Base for response models serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DailySeries(CamelModel):
    dates: list[str] = Field(default_factory=list)
    hits: list[int] = Field(default_factory=list)
    uniques: list[int] = Field(default_factory=list)


class OsSeries(CamelModel):
    key: str
    data: list[int] = Field(default_factory=list)


class DailyOs(CamelModel):
    labels: list[str] = Field(default_factory=list)
    series: list[OsSeries] = Field(default_factory=list)


class RunCounts(CamelModel):
    started: int = 0
    completed: int = 0


class ErrorStats(CamelModel):
    compile: int = 0
    runtime: int = 0
    compile_rate: float = 0.0
    runtime_rate: float = 0.0


class Histogram(CamelModel):
    labels: list[str] = Field(default_factory=lambda: list(HISTOGRAM_LABELS))
    values: list[int] = Field(default_factory=lambda: [0] * len(HISTOGRAM_LABELS))


class DurationStats(CamelModel):
    """Completed-run durations: nearest-rank percentiles and fixed buckets."""

    count: int = 0
    median: int = 0
    p90: int = 0
    hist: Histogram = Field(default_factory=Histogram)
    avg_wait_ms: float = 0.0


class GeoCount(CamelModel):
    hits: int = 0
    visitors: int = 0


class GeoRollup(CamelModel):
    by_continent: dict[str, GeoCount] = Field(default_factory=dict)
    by_country: dict[str, GeoCount] = Field(default_factory=dict)


class SessionSummary(CamelModel):
    """A reconstructed session as shown in the recent sessions list."""

    id: str
    visitor: str
    started_at: str
    last_at: str
    completed: bool = False
    exit: int = -1
    duration_ms: int = 0
    interactive: bool = False


class RankedRun(CamelModel):
    """One completed run in the success / frustrated rankings."""

    visitor: str
    ts: str
    duration_ms: int = 0
    interactive: bool = False
    exit: int = 0
    output_bucket: Optional[str] = None


class RankedSessions(CamelModel):
    success_top: list[RankedRun] = Field(default_factory=list)
    frustrated_top: list[RankedRun] = Field(default_factory=list)


class TopRow(CamelModel):
    key: str
    count: int
    pct: float
    percent: float


class Tables(CamelModel):
    events_top: list[TopRow] = Field(default_factory=list)
    os_top: list[TopRow] = Field(default_factory=list)
    ext_top: list[TopRow] = Field(default_factory=list)
    vscode_top: list[TopRow] = Field(default_factory=list)
    exit_top: list[TopRow] = Field(default_factory=list)
    exceptions_top: list[TopRow] = Field(default_factory=list)


class StatsWindow(CamelModel):
    """
    Aggregation result for one window.

    date_from / date_to are the first and last calendar days covered
    (serialized as "from" and "to"). All collections default to empty and
    all counters to zero, so a default-constructed window is the complete
    zero-valued result.
    """

    date_from: str = Field(..., alias="from")
    date_to: str = Field(..., alias="to")
    window_days: int = DEFAULT_WINDOW_DAYS

    total: int = 0
    uniques: int = 0
    os_types: int = 0
    ext_types: int = 0
    vscode_types: int = 0

    daily: DailySeries = Field(default_factory=DailySeries)
    daily_os: DailyOs = Field(default_factory=DailyOs)

    by_event: dict[str, int] = Field(default_factory=dict)
    by_os: dict[str, int] = Field(default_factory=dict)
    by_ext: dict[str, int] = Field(default_factory=dict)
    by_vscode: dict[str, int] = Field(default_factory=dict)

    hourly: list[int] = Field(default_factory=lambda: [0] * 24)
    hourly_visitors: list[int] = Field(default_factory=lambda: [0] * 24)
    dow: list[int] = Field(default_factory=lambda: [0] * 7)

    runs: RunCounts = Field(default_factory=RunCounts)
    errors: ErrorStats = Field(default_factory=ErrorStats)
    durations: DurationStats = Field(default_factory=DurationStats)

    exit_codes: dict[str, int] = Field(default_factory=dict)
    output_buckets: dict[str, int] = Field(default_factory=dict)
    interactive_rate: float = 0.0
    truncation_rate: float = 0.0
    top_exceptions: dict[str, int] = Field(default_factory=dict)

    geo: GeoRollup = Field(default_factory=GeoRollup)

    active_sessions: int = 0
    installs_total: int = 0
    installs_window: int = 0
    sessions_recent: list[SessionSummary] = Field(default_factory=list)
    daily_learning_outcomes: dict[str, dict[str, int]] = Field(default_factory=dict)
    sessions: RankedSessions = Field(default_factory=RankedSessions)
    tables: Tables = Field(default_factory=Tables)

    @classmethod
    def empty(cls, window_days: int, today: date) -> "StatsWindow":
        """Zero-valued result, used when the store cannot be read."""
        day = today.isoformat()
        return cls(date_from=day, date_to=day, window_days=window_days)

    def to_json(self) -> dict:
        """Serialize with the dashboard's camelCase keys."""
        return self.model_dump(by_alias=True)


# ==============================================================================
# Window Resolution
# ==============================================================================


def parse_day(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD string, returning None if it is not one."""
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError:
        return None


def day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def resolve_window(
    date_from: Optional[str],
    date_to: Optional[str],
    now: datetime,
    max_range_days: int = MAX_RANGE_DAYS,
) -> tuple[datetime, datetime, bool]:
    """
    Resolve the half-open [start, end) range for a stats query.

    Both dates must parse and satisfy from <= to to be honored; the range
    then covers both calendar days in full. A range longer than
    max_range_days, or one ending on the last representable day, is
    treated like an invalid one. Otherwise the window is all retained
    history up to now.

    Returns:
        Tuple of (start, end, explicit)
    """
    first = parse_day(date_from)
    last = parse_day(date_to)
    if first is None or last is None or first > last:
        return EPOCH, now, False
    if (last - first).days + 1 > max_range_days:
        logger.warning("Ignoring %s..%s: longer than %d days", first, last, max_range_days)
        return EPOCH, now, False
    try:
        end = day_start(last + timedelta(days=1))
    except OverflowError:
        logger.warning("Ignoring %s..%s: end of range is not representable", first, last)
        return EPOCH, now, False
    return day_start(first), end, True


def iter_days(first: date, last: date) -> list[str]:
    """Every calendar day from first to last inclusive, as YYYY-MM-DD."""
    days = []
    current = first
    while current <= last:
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days


def format_ts(moment: datetime) -> str:
    """ISO-8601 UTC with milliseconds and a Z suffix."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


# ==============================================================================
# Aggregation
# ==============================================================================


class StatsTimeoutError(RuntimeError):
    """A stats computation ran past its deadline."""


def _check_deadline(deadline: Optional[float]) -> None:
    if deadline is not None and monotonic() >= deadline:
        raise StatsTimeoutError("stats computation exceeded its deadline")


def _from_ms(timestamp_ms: int) -> datetime:
    return EPOCH + timedelta(milliseconds=timestamp_ms)


def _exit_key(event: CanonicalEvent) -> str:
    code = event.metadata.exit_code
    return MISSING_EXIT_KEY if code is None else str(code)


def _run_rank_key(event: CanonicalEvent, descending: bool) -> tuple:
    """Sort key: interactivity then duration, nulls last in both directions."""
    interactive = event.metadata.scanner_usage
    duration = event.metadata.duration_ms
    if interactive is None:
        inter_rank = 2
    elif descending:
        inter_rank = 0 if interactive else 1
    else:
        inter_rank = 0 if not interactive else 1
    if duration is None:
        dur_rank = (1, 0)
    else:
        dur_rank = (0, -duration if descending else duration)
    return (inter_rank, dur_rank)


def _ranked_run(event: CanonicalEvent) -> RankedRun:
    m = event.metadata
    return RankedRun(
        visitor=mask_visitor(event.anon_id),
        ts=format_ts(event.event_time),
        duration_ms=m.duration_ms or 0,
        interactive=m.scanner_usage is True,
        exit=m.exit_code if m.exit_code is not None else 0,
        output_bucket=m.output_bytes_bucket or None,
    )


def build_stats(
    events: list[CanonicalEvent],
    start: datetime,
    end: datetime,
    now: datetime,
    *,
    explicit: bool = False,
    window_days: int = DEFAULT_WINDOW_DAYS,
    recent_events: Optional[list[CanonicalEvent]] = None,
    installs_total: int = 0,
    top_n: int = DEFAULT_TOP_N,
    recent_sessions_limit: int = DEFAULT_RECENT_SESSIONS,
    active_session_minutes: int = DEFAULT_ACTIVITY_MINUTES,
    deadline: Optional[float] = None,
) -> StatsWindow:
    """
    Fold a window's events into a StatsWindow.

    Pure function: all state lives in locals, so repeated calls with the same
    input produce the same output.

    Args:
        events: Events read for the window; anything outside [start, end)
                is ignored
        start: Inclusive window start
        end: Exclusive window end
        now: Reference time for the active-session look-back
        explicit: Whether the window came from caller-supplied dates
        window_days: Nominal window size echoed in the result
        recent_events: Events from the short look-back before now
        installs_total: Lifetime install count
        top_n: Rows per ranked table
        recent_sessions_limit: Sessions in the recent list
        active_session_minutes: Activity threshold for active sessions
        deadline: monotonic() value after which folding is abandoned

    Returns:
        Fully populated StatsWindow

    Raises:
        StatsTimeoutError: If the deadline passes before the fold finishes
    """
    window = sorted(
        (e for e in events if start <= e.event_time < end), key=lambda e: e.timestamp_ms
    )
    reconstructor = SessionReconstructor(active_session_minutes)

    # Daily axis: every day in an explicit window, otherwise first event to today
    if explicit:
        dates = iter_days(start.date(), (end - timedelta(days=1)).date())
    elif window:
        last_day = max(now.date(), window[-1].event_time.date())
        dates = iter_days(window[0].event_time.date(), last_day)
    else:
        dates = []

    # Per-call uniqueness sets
    visitors: set[str] = set()
    daily_visitors: dict[str, set[str]] = defaultdict(set)
    hourly_visitors: list[set[str]] = [set() for _ in range(24)]
    country_visitors: dict[str, set[str]] = defaultdict(set)

    by_event: Counter = Counter()
    by_os: Counter = Counter()
    by_ext: Counter = Counter()
    by_vscode: Counter = Counter()
    daily_hits: Counter = Counter()
    daily_os: dict[str, Counter] = defaultdict(Counter)
    country_hits: Counter = Counter()
    hourly = [0] * 24
    dow = [0] * 7

    started = completed = compile_errors = runtime_errors = installs_window = 0
    interactive_runs = truncated_runs = 0
    durations: list[int] = []
    waits: list[int] = []
    exit_codes: Counter = Counter()
    output_buckets: Counter = Counter()
    exceptions: Counter = Counter()
    outcomes: dict[str, Counter] = defaultdict(Counter)
    completions: list[CanonicalEvent] = []

    for index, event in enumerate(window):
        if index % DEADLINE_CHECK_EVERY == 0:
            _check_deadline(deadline)
        moment = event.event_time
        day = moment.date().isoformat()
        anon = event.anon_id
        name = event.event_name
        m = event.metadata

        visitors.add(anon)
        by_event[name.value] += 1
        by_os[event.os or UNKNOWN_KEY] += 1
        by_ext[event.ext_version or UNKNOWN_KEY] += 1
        by_vscode[event.host_app_version or UNKNOWN_KEY] += 1

        daily_hits[day] += 1
        daily_visitors[day].add(anon)
        daily_os[event.os or UNKNOWN_KEY][day] += 1
        hourly[moment.hour] += 1
        hourly_visitors[moment.hour].add(anon)
        # Sunday = 0
        dow[(moment.weekday() + 1) % 7] += 1

        country = event.geo.country or UNKNOWN_KEY
        country_hits[country] += 1
        country_visitors[country].add(anon)

        if name == EventName.RUN_STARTED:
            started += 1
        elif name == EventName.RUN_ERROR:
            phase = m.error_phase
            if phase == COMPILE_PHASE:
                compile_errors += 1
            elif phase is not None:
                runtime_errors += 1
            if m.exception_hash:
                exceptions[m.exception_hash] += 1
        elif name == EventName.RUN_COMPLETED:
            completed += 1
            completions.append(event)
            if m.duration_ms is not None:
                durations.append(m.duration_ms)
                if m.wait_ms_total is not None:
                    waits.append(m.wait_ms_total)
            exit_codes[_exit_key(event)] += 1
            output_buckets[m.output_bytes_bucket or MISSING_BUCKET_KEY] += 1
            outcomes[day][_exit_key(event)] += 1
            if m.scanner_usage is True:
                interactive_runs += 1
            if m.truncated_output is True:
                truncated_runs += 1
        elif name == EventName.INSTALL_CREATED:
            installs_window += 1

    total = len(window)

    # Durations
    durations.sort()
    duration_stats = DurationStats(
        count=len(durations),
        median=percentile(durations, 50),
        p90=percentile(durations, 90),
        hist=Histogram(values=duration_histogram(durations)),
        avg_wait_ms=(sum(waits) / len(waits)) if waits else 0.0,
    )

    # Geography
    by_country = {
        country: GeoCount(hits=hits, visitors=len(country_visitors[country]))
        for country, hits in ranked(country_hits)
    }
    continent_totals: dict[str, list[int]] = {}
    for country, counts in by_country.items():
        continent = continent_of(None if country == UNKNOWN_KEY else country)
        bucket = continent_totals.setdefault(continent, [0, 0])
        bucket[0] += counts.hits
        bucket[1] += counts.visitors
    by_continent = {
        continent: GeoCount(hits=hits, visitors=visitors)
        for continent, (hits, visitors) in sorted(
            continent_totals.items(), key=lambda kv: (-kv[1][0], kv[0])
        )
    }

    # Sessions
    _check_deadline(deadline)
    sessions = reconstructor.process_events(window)
    now_ms = (now - EPOCH) // timedelta(milliseconds=1)
    active = reconstructor.count_active(recent_events or [], now_ms)
    sessions_recent = [
        SessionSummary(
            id=s.session_id,
            visitor=mask_visitor(s.anon_id),
            started_at=format_ts(_from_ms(s.started_at)),
            last_at=format_ts(_from_ms(s.last_at)),
            completed=s.completed,
            exit=s.exit_code if s.exit_code is not None else -1,
            duration_ms=s.duration_ms or 0,
            interactive=s.interactive is True,
        )
        for s in reconstructor.most_recent(sessions.values(), recent_sessions_limit)
    ]

    successes = [e for e in completions if e.metadata.exit_code == 0]
    frustrated = [e for e in completions if e.metadata.exit_code == 130]
    successes.sort(key=lambda e: _run_rank_key(e, descending=True))
    frustrated.sort(key=lambda e: _run_rank_key(e, descending=False))

    # Series
    os_order = [key for key, _ in ranked(by_os)]
    top_exceptions = dict(ranked(exceptions, TOP_EXCEPTIONS_LIMIT))

    return StatsWindow(
        date_from=dates[0] if dates else now.date().isoformat(),
        date_to=dates[-1] if dates else now.date().isoformat(),
        window_days=window_days,
        total=total,
        uniques=len(visitors),
        os_types=len(by_os),
        ext_types=len(by_ext),
        vscode_types=len(by_vscode),
        daily=DailySeries(
            dates=dates,
            hits=[daily_hits[d] for d in dates],
            uniques=[len(daily_visitors.get(d, ())) for d in dates],
        ),
        daily_os=DailyOs(
            labels=dates,
            series=[
                OsSeries(key=os_name, data=[daily_os[os_name][d] for d in dates])
                for os_name in os_order
            ],
        ),
        by_event=dict(ranked(by_event)),
        by_os=dict(ranked(by_os)),
        by_ext=dict(ranked(by_ext)),
        by_vscode=dict(ranked(by_vscode)),
        hourly=hourly,
        hourly_visitors=[len(s) for s in hourly_visitors],
        dow=dow,
        runs=RunCounts(started=started, completed=completed),
        errors=ErrorStats(
            compile=compile_errors,
            runtime=runtime_errors,
            compile_rate=safe_rate(compile_errors, started),
            runtime_rate=safe_rate(runtime_errors, started),
        ),
        durations=duration_stats,
        exit_codes=dict(ranked(exit_codes)),
        output_buckets=dict(ranked(output_buckets)),
        interactive_rate=safe_rate(interactive_runs, completed),
        truncation_rate=safe_rate(truncated_runs, completed),
        top_exceptions=top_exceptions,
        geo=GeoRollup(by_continent=by_continent, by_country=by_country),
        active_sessions=active,
        installs_total=installs_total,
        installs_window=installs_window,
        sessions_recent=sessions_recent,
        daily_learning_outcomes={
            day: dict(sorted(outcomes[day].items())) for day in sorted(outcomes)
        },
        sessions=RankedSessions(
            success_top=[_ranked_run(e) for e in successes[:RANKED_RUNS_LIMIT]],
            frustrated_top=[_ranked_run(e) for e in frustrated[:RANKED_RUNS_LIMIT]],
        ),
        tables=Tables(
            events_top=top_rows(by_event, total, top_n),
            os_top=top_rows(by_os, total, top_n),
            ext_top=top_rows(by_ext, total, top_n),
            vscode_top=top_rows(by_vscode, total, top_n),
            exit_top=top_rows(exit_codes, sum(exit_codes.values()), top_n),
            exceptions_top=top_rows(top_exceptions, sum(exceptions.values()), top_n),
        ),
    )


class StatsAggregator:
    """
    Reads a window from the EventStore and builds its StatsWindow.

    The aggregator holds configuration and the store handle only. Each
    compute_stats() call works on freshly read events and fresh counters.
    """

    def __init__(
        self,
        store,
        window_days: int = DEFAULT_WINDOW_DAYS,
        top_n: int = DEFAULT_TOP_N,
        recent_sessions_limit: int = DEFAULT_RECENT_SESSIONS,
        active_session_minutes: int = DEFAULT_ACTIVITY_MINUTES,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_range_days: int = MAX_RANGE_DAYS,
    ):
        """
        Initialize the aggregator.

        Args:
            store: EventStore to read from, or None when not configured
            window_days: Nominal window size echoed in results
            top_n: Rows per ranked table
            recent_sessions_limit: Sessions in the recent list
            active_session_minutes: Look-back for the active session count
            timeout_ms: Deadline for one compute_stats() call
            max_range_days: Longest explicit range honored
        """
        self.store = store
        self.window_days = window_days
        self.top_n = top_n
        self.recent_sessions_limit = recent_sessions_limit
        self.active_session_minutes = active_session_minutes
        self.timeout_ms = timeout_ms
        self.max_range_days = max_range_days

    def compute_stats(
        self,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        window_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> StatsWindow:
        """
        Compute stats for the requested window.

        Args:
            date_from: First day (YYYY-MM-DD), honored only together with date_to
            date_to: Last day (YYYY-MM-DD), inclusive
            window_days: Override for the nominal window size
            now: Reference time (defaults to the current UTC time)

        Returns:
            StatsWindow; the zero-valued result if the store cannot be read
            or the deadline passes
        """
        now = now or datetime.now(timezone.utc)
        window_days = window_days if window_days is not None else self.window_days
        start, end, explicit = resolve_window(date_from, date_to, now, self.max_range_days)
        deadline = monotonic() + self.timeout_ms / 1000

        if self.store is None:
            return StatsWindow.empty(window_days, now.date())

        try:
            events = self.store.fetch_events(start, end)
            recent = self.store.fetch_events_since(
                now - timedelta(minutes=self.active_session_minutes)
            )
            installs_total = self.store.count_events(EventName.INSTALL_CREATED.value)
            _check_deadline(deadline)
        except StatsTimeoutError:
            logger.warning("Stats read exceeded %d ms, returning empty window", self.timeout_ms)
            return StatsWindow.empty(window_days, now.date())
        except Exception:
            logger.exception("Stats query failed, returning empty window")
            return StatsWindow.empty(window_days, now.date())

        try:
            stats = build_stats(
                events,
                start,
                end,
                now,
                explicit=explicit,
                window_days=window_days,
                recent_events=recent,
                installs_total=installs_total,
                top_n=self.top_n,
                recent_sessions_limit=self.recent_sessions_limit,
                active_session_minutes=self.active_session_minutes,
                deadline=deadline,
            )
        except StatsTimeoutError:
            logger.warning(
                "Stats over %d events exceeded %d ms, returning empty window",
                len(events),
                self.timeout_ms,
            )
            return StatsWindow.empty(window_days, now.date())

        logger.info(
            "Stats computed: %d events, %d visitors (%s to %s)",
            stats.total,
            stats.uniques,
            stats.date_from,
            stats.date_to,
        )
        return stats
