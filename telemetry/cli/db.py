# ==============================================================================
# Database Commands
# ==============================================================================
"""
Database management commands for the telemetry CLI.

Commands for creating, resetting and checking the event store schema.
"""

from typing import Annotated

import typer

from telemetry.cli.shared import C, I, _status_badge
from telemetry.utils.config import get_settings


def _require_configured() -> None:
    settings = get_settings()
    if not settings.postgres.is_configured:
        print(
            f"{C.BRIGHT_RED}{I.CROSS} PostgreSQL is not configured "
            f"(set DATABASE_URL or PG_HOST/PG_USER){C.RESET}"
        )
        raise typer.Exit(1)


# ==============================================================================
# Commands
# ==============================================================================


def db_init() -> None:
    """Create the event table and indexes if they do not exist.

    Safe to run repeatedly; the server also does this on startup.

    Examples:
        telemetry db init
    """
    from telemetry.utils.db import ensure_schema

    _require_configured()
    schema = get_settings().postgres.schema_name
    print(f"  Initializing schema '{C.WHITE}{schema}{C.RESET}'...")
    try:
        ensure_schema()
    except Exception as e:
        print(f"{C.BRIGHT_RED}{I.CROSS} Schema initialization failed: {e}{C.RESET}")
        raise typer.Exit(1)
    print(f"{C.BRIGHT_GREEN}{I.CHECK} Schema '{schema}' ready{C.RESET}")


def db_reset(
    confirm: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt")] = False,
) -> None:
    """Drop and recreate the event schema.

    WARNING: every stored event is deleted.

    Examples:
        telemetry db reset       # With confirmation prompt
        telemetry db reset -y    # Skip confirmation
    """
    from telemetry.utils.db import reset_schema

    _require_configured()
    schema = get_settings().postgres.schema_name
    if not confirm:
        typer.confirm(
            f"This will DELETE all telemetry events in schema '{schema}'. Are you sure?",
            abort=True,
        )

    print(f"  Resetting schema '{C.WHITE}{schema}{C.RESET}'...")
    try:
        reset_schema()
    except RuntimeError as e:
        print(f"{C.BRIGHT_RED}{I.CROSS} {e}{C.RESET}")
        raise typer.Exit(1)
    print(f"{C.BRIGHT_GREEN}{I.CHECK} Schema '{schema}' reset{C.RESET}")


def db_status() -> None:
    """Check that the event store is reachable.

    Examples:
        telemetry db status
    """
    from telemetry.utils.db import check_db_connection

    ok, detail = check_db_connection()
    label = "reachable" if ok else "unreachable"
    print(f"  PostgreSQL: {_status_badge(label, ok)}  {C.DIM}{detail}{C.RESET}")
    if not ok:
        raise typer.Exit(1)
