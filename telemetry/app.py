# ==============================================================================
# Telemetry Service CLI
# ==============================================================================
"""
Command-line interface for the telemetry ingest and analytics service.

Usage:
    telemetry --help
    telemetry serve --port 8088
    telemetry stats --from 2025-01-01 --to 2025-01-31
    telemetry config show
    telemetry db init
    telemetry db reset -y
    telemetry db status
"""

import os

import typer

# Set consistent terminal width for help output formatting
if "COLUMNS" not in os.environ:
    os.environ["COLUMNS"] = "115"

app = typer.Typer(
    name="telemetry",
    help="Telemetry ingest and analytics service CLI",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Serve command is imported from telemetry.cli.server
from telemetry.cli.server import serve

app.command("serve")(serve)

# Stats command is imported from telemetry.cli.analytics
from telemetry.cli.analytics import show_stats

app.command("stats")(show_stats)

db_app = typer.Typer(
    help="Event store schema management",
    no_args_is_help=True,
)
app.add_typer(db_app, name="db")

# Register db commands from cli.db module
from telemetry.cli.db import db_init, db_reset, db_status

db_app.command("init")(db_init)
db_app.command("reset")(db_reset)
db_app.command("status")(db_status)

config_app = typer.Typer(
    help="Configuration management",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")

# Register config commands from cli.config module
from telemetry.cli.config import config_show

config_app.command("show")(config_show)


# ==============================================================================
# Entry Point
# ==============================================================================


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
