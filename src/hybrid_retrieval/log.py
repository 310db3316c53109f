"""
Logging setup for command-line entry points.

Library modules only create loggers; handlers are installed here.
"""

from __future__ import annotations

import logging
import sys

_HANDLER_NAME = "hybrid_retrieval"


def configure_logging(level: int = logging.INFO) -> None:
    """Install a single stream handler with timestamped records."""
    root_logger = logging.getLogger()
    for existing in root_logger.handlers[:]:
        if existing.get_name() == _HANDLER_NAME:
            root_logger.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    # Keep HTTP client chatter out of the default output
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
