# ==============================================================================
# Stats Command
# ==============================================================================
"""
Stats command for the telemetry CLI.

Computes the same StatsWindow the /stats endpoint serves, straight from the
configured PostgreSQL event store.
"""

import json
from typing import Annotated, NoReturn, Optional

import typer

from telemetry.cli.shared import (
    BOX_WIDTH,
    C,
    I,
    _box_bottom,
    _box_header,
    _box_line,
    _empty_line,
    _kv_line,
    _section_header,
    bar,
    format_ms,
    format_rate,
)
from telemetry.core.aggregator import StatsAggregator, StatsWindow
from telemetry.utils.config import get_settings

# Rows shown per ranked section in table mode
TABLE_ROWS = 5


# ==============================================================================
# Rendering
# ==============================================================================


def _print_top(title: str, rows, width: int) -> None:
    print(_section_header(title, width))
    if not rows:
        print(_box_line(f"  {C.DIM}no data{C.RESET}", width))
        return
    largest = rows[0].count
    for row in rows[:TABLE_ROWS]:
        key = row.key if len(row.key) <= 22 else row.key[:21] + "…"
        line = f"  {key:<24}{row.count:>8,}  {row.percent:>5.1f}%  {bar(row.count, largest, 16)}"
        print(_box_line(line, width))


def render_stats(stats: StatsWindow, width: int = BOX_WIDTH) -> None:
    """Print a StatsWindow as a box table."""
    print()
    print(_box_header("TELEMETRY STATS", width))
    print(_empty_line(width))
    print(_kv_line("Window", f"{stats.date_from} to {stats.date_to}", width))
    print(_kv_line("Events", f"{stats.total:,}", width))
    print(_kv_line("Unique visitors", f"{stats.uniques:,}", width))
    installs = f"{stats.installs_window:,} / {stats.installs_total:,}"
    print(_kv_line("Installs (window/total)", installs, width))
    print(_kv_line("Active sessions", f"{stats.active_sessions:,}", width))
    print(_empty_line(width))

    print(_section_header("Runs", width))
    runs, errors, durations = stats.runs, stats.errors, stats.durations
    print(_kv_line("Started / completed", f"{runs.started:,} / {runs.completed:,}", width))
    compile_errors = f"{errors.compile:,} ({format_rate(errors.compile_rate)})"
    runtime_errors = f"{errors.runtime:,} ({format_rate(errors.runtime_rate)})"
    print(_kv_line("Compile errors", compile_errors, width))
    print(_kv_line("Runtime errors", runtime_errors, width))
    print(_kv_line("Interactive rate", format_rate(stats.interactive_rate), width))
    print(_kv_line("Truncation rate", format_rate(stats.truncation_rate), width))
    print(
        _kv_line(
            "Duration median / p90",
            f"{format_ms(durations.median)} / {format_ms(durations.p90)}",
            width,
        )
    )
    print(_kv_line("Average wait", format_ms(durations.avg_wait_ms), width))

    _print_top("Events", stats.tables.events_top, width)
    _print_top("Operating systems", stats.tables.os_top, width)
    _print_top("Extension versions", stats.tables.ext_top, width)
    _print_top("Exit codes", stats.tables.exit_top, width)

    print(_section_header("Continents", width))
    if not stats.geo.by_continent:
        print(_box_line(f"  {C.DIM}no data{C.RESET}", width))
    for continent, counts in list(stats.geo.by_continent.items())[:TABLE_ROWS]:
        line = f"  {continent:<24}{counts.hits:>8,} hits  {counts.visitors:>6,} visitors"
        print(_box_line(line, width))

    print(_empty_line(width))
    print(_box_bottom(width))
    print()


# ==============================================================================
# Commands
# ==============================================================================


def _fail(message: str, json_output: bool) -> NoReturn:
    if json_output:
        print(json.dumps({"error": message}))
    else:
        print(f"\n{C.BRIGHT_RED}{I.CROSS} {message}{C.RESET}\n")
    raise typer.Exit(1)


def show_stats(
    date_from: Annotated[
        Optional[str], typer.Option("--from", help="First day (YYYY-MM-DD)")
    ] = None,
    date_to: Annotated[
        Optional[str], typer.Option("--to", help="Last day, inclusive (YYYY-MM-DD)")
    ] = None,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """Show usage analytics from the event store.

    Without --from/--to the whole retained history is aggregated. Both dates
    must be given for a range to take effect.

    Examples:
        telemetry stats                                 # All data, table output
        telemetry stats --from 2025-01-01 --to 2025-01-31
        telemetry stats --json                          # JSON output for scripting
    """
    import psycopg2

    from telemetry.base.repositories import StoreUnavailableError
    from telemetry.infrastructure.repositories import PostgreSQLEventStore
    from telemetry.utils.db import check_db_connection

    settings = get_settings()
    if not settings.postgres.is_configured:
        _fail("PostgreSQL is not configured (set DATABASE_URL or PG_HOST/PG_USER)", json_output)

    ok, detail = check_db_connection(settings.postgres)
    if not ok:
        _fail(f"PostgreSQL is unreachable: {detail}", json_output)

    store = PostgreSQLEventStore(settings)
    try:
        store.connect()
    except (StoreUnavailableError, psycopg2.Error) as e:
        _fail(f"Could not connect to PostgreSQL: {str(e).strip()}", json_output)
    try:
        aggregator = StatsAggregator(
            store,
            window_days=settings.stats.window_days,
            top_n=settings.stats.top_n,
            recent_sessions_limit=settings.stats.recent_sessions_limit,
            active_session_minutes=settings.stats.active_session_minutes,
            timeout_ms=settings.stats.timeout_ms,
            max_range_days=settings.stats.max_range_days,
        )
        stats = aggregator.compute_stats(date_from, date_to)
    finally:
        store.close()

    if json_output:
        print(json.dumps(stats.to_json(), indent=2, ensure_ascii=False))
        return

    render_stats(stats)
