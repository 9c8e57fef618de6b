# ==============================================================================
# Serve Command
# ==============================================================================
"""
Runs the HTTP ingest/stats server under uvicorn.
"""

from typing import Annotated, Optional

import typer

from telemetry.utils.config import get_settings
from telemetry.utils.log import configure_logging


def serve(
    host: Annotated[
        Optional[str], typer.Option("--host", help="Bind address (default: SERVER_HOST)")
    ] = None,
    port: Annotated[
        Optional[int], typer.Option("--port", "-p", help="Listen port (default: SERVER_PORT)")
    ] = None,
) -> None:
    """Start the telemetry HTTP server.

    Examples:
        telemetry serve
        telemetry serve --host 0.0.0.0 --port 8088
    """
    import uvicorn

    from telemetry.server import create_app

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_file)

    uvicorn.run(
        create_app(settings),
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_config=None,
        proxy_headers=True,
    )
