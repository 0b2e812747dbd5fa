"""
Logging utilities for the site instance handlers.
"""

import json
import logging
import sys
from typing import List, Optional

PLAIN_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, picked up as structured entries by Cloud Logging."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "timestamp": self.formatTime(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(
    verbose: bool = False,
    log_file: Optional[str] = None,
    structured: bool = False,
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging
        log_file: Optional path to an additional log file
        structured: Emit JSON lines instead of plain text

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    if structured:
        # basicConfig only applies its format to handlers without a formatter
        for handler in handlers:
            handler.setFormatter(JsonFormatter())

    logging.basicConfig(level=level, format=PLAIN_FORMAT, handlers=handlers)

    return logging.getLogger(__name__)
