# ==============================================================================
# Logging Setup
# ==============================================================================
"""
Root logger configuration for long-running processes (the HTTP server).

Library modules only ever call logging.getLogger(__name__); handlers are
installed here, once, by the process entry point.
"""

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Logging level name (e.g. "INFO", "DEBUG")
        log_file: Optional file that receives a copy of every record
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    # Suppress noisy third-party loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
