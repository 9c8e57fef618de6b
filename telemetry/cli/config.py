# ==============================================================================
# Config Commands
# ==============================================================================
"""
Configuration commands for the telemetry CLI.
"""

import json
from typing import Annotated

import typer

from telemetry.cli.shared import C
from telemetry.utils.config import Settings, get_settings


def _mask(secret: str | None) -> str:
    return "********" if secret else "(not set)"


def settings_summary(settings: Settings) -> dict:
    """Configuration as a JSON-ready dict (includes secrets)."""
    pg = settings.postgres
    return {
        "postgresql": {
            "configured": pg.is_configured,
            "url": pg.url,
            "host": pg.host,
            "port": pg.port,
            "database": pg.database,
            "schema": pg.schema_name,
            "user": pg.user,
            "password": pg.password,
            "sslmode": pg.sslmode,
            "pool_min": pg.pool_min,
            "pool_max": pg.pool_max,
            "pool_timeout_seconds": pg.pool_timeout_seconds,
            "statement_timeout_ms": pg.statement_timeout_ms,
        },
        "geo": {
            "mmdb": str(settings.geo.mmdb) if settings.geo.mmdb else None,
        },
        "server": {
            "host": settings.server.host,
            "port": settings.server.port,
            "max_body_bytes": settings.server.max_body_bytes,
        },
        "stats": {
            "window_days": settings.stats.window_days,
            "secret": settings.stats.secret,
            "top_n": settings.stats.top_n,
            "recent_sessions_limit": settings.stats.recent_sessions_limit,
            "active_session_minutes": settings.stats.active_session_minutes,
            "timeout_ms": settings.stats.timeout_ms,
            "max_range_days": settings.stats.max_range_days,
        },
        "log_level": settings.log_level,
        "log_file": str(settings.log_file) if settings.log_file else None,
    }


# ==============================================================================
# Commands
# ==============================================================================


def config_show(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output configuration as JSON")
    ] = False,
) -> None:
    """Display current configuration (includes secrets in JSON mode)."""
    settings = get_settings()

    if json_output:
        print(json.dumps(settings_summary(settings), indent=2))
        return

    pg = settings.postgres
    print()
    print(f"{C.BOLD}Configuration{C.RESET}")
    print()

    print(f"{C.CYAN}PostgreSQL{C.RESET}")
    if pg.url:
        print(f"  URL:        {C.WHITE}(from DATABASE_URL){C.RESET}")
    else:
        print(f"  Host:       {C.WHITE}{pg.host or '(not set)'}{C.RESET}")
        print(f"  Port:       {C.WHITE}{pg.port}{C.RESET}")
        print(f"  Database:   {C.WHITE}{pg.database}{C.RESET}")
        print(f"  User:       {C.WHITE}{pg.user or '(not set)'}{C.RESET}")
        print(f"  Password:   {C.WHITE}{_mask(pg.password)}{C.RESET}")
        print(f"  SSL:        {C.WHITE}{pg.sslmode}{C.RESET}")
    print(f"  Schema:     {C.WHITE}{pg.schema_name}{C.RESET}")
    print(f"  Pool:       {C.WHITE}{pg.pool_min}..{pg.pool_max}{C.RESET}")
    print()

    print(f"{C.CYAN}Geo{C.RESET}")
    print(f"  Database:   {C.WHITE}{settings.geo.mmdb or '(not set)'}{C.RESET}")
    print()

    print(f"{C.CYAN}Server{C.RESET}")
    print(f"  Listen:     {C.WHITE}{settings.server.host}:{settings.server.port}{C.RESET}")
    print(f"  Max body:   {C.WHITE}{settings.server.max_body_bytes:,} bytes{C.RESET}")
    print()

    print(f"{C.CYAN}Stats{C.RESET}")
    print(f"  Window:     {C.WHITE}{settings.stats.window_days} days{C.RESET}")
    print(f"  Top N:      {C.WHITE}{settings.stats.top_n}{C.RESET}")
    print(f"  Secret:     {C.WHITE}{_mask(settings.stats.secret)}{C.RESET}")
    print()

    print(f"{C.CYAN}Logging{C.RESET}")
    print(f"  Level:      {C.WHITE}{settings.log_level}{C.RESET}")
    print(f"  File:       {C.WHITE}{settings.log_file or '(stderr only)'}{C.RESET}")
    print()
