# pricewatch/config/logging_config.py

"""Per-run timestamped logging for pricewatch.

Every process start (a one-off refresh, the daily scheduler, a quota
lookup) gets its own ``logs/run_YYYYmmdd_HHMMSS.log``.  All
``pricewatch.*`` loggers propagate to the project logger configured
here, so the orchestrator, extractor and storage output for a single
pass lands in one file.

Refresh passes run extraction in worker threads, so the file format
carries the thread name next to the module path.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from pricewatch.config.settings import Settings

_DETAILED_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | "
    "%(module)s:%(funcName)s:%(lineno)d | %(message)s"
)

_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

PROJECT_LOGGER = "pricewatch"


def setup_logging(
    logs_dir: Path | None = None,
    console_level: int = logging.WARNING,
) -> Path:
    """Attach file and console handlers to the ``pricewatch`` logger.

    Args:
        logs_dir: Directory for the run log. Defaults to
            ``Settings.LOGS_DIR``.
        console_level: Threshold for the stderr handler.

    Returns:
        The path of the log file for this run.
    """
    target_dir = logs_dir or Settings.LOGS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)

    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = target_dir / f"run_{stamp}.log"

    project_logger = logging.getLogger(PROJECT_LOGGER)
    project_logger.setLevel(logging.DEBUG)

    # Repeated calls (tests, scheduler re-entry) keep the first handlers
    if project_logger.handlers:
        return log_file

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(_DETAILED_FORMAT, datefmt=_DATE_FORMAT)
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT)
    )

    project_logger.addHandler(file_handler)
    project_logger.addHandler(console_handler)

    project_logger.info("Logging initialised, run log: %s", log_file)
    return log_file
