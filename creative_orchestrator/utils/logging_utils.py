"""Logging setup helpers."""

import logging
import os
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging() -> None:
    """
    Configure root logging.

    Controlled by LOG_LEVEL env var (default: INFO).
    """
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    # Avoid clobbering existing handlers (e.g., tests or embedding apps).
    if logging.getLogger().handlers:
        logging.getLogger().setLevel(level)
        return

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )


def attach_run_log(run_id: str, output_dir: str = "output") -> logging.Handler:
    """
    Mirror package logs into output/<run_id>/run.log.

    Returns:
        The handler, to pass to detach_run_log when the run ends
    """
    log_dir = Path(output_dir) / run_id
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / "run.log", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.getLogger("creative_orchestrator").addHandler(handler)
    return handler


def detach_run_log(handler: logging.Handler) -> None:
    logging.getLogger("creative_orchestrator").removeHandler(handler)
    handler.close()
