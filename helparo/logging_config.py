"""
Logging configuration shared by the API and the polling client.
"""

import logging
import sys

LOG_FORMAT = (
    "%(asctime)s - [%(levelname)s] - %(name)s - "
    "(%(filename)s).%(funcName)s(%(lineno)d) - %(message)s"
)


def setup_logging(level: int = logging.INFO) -> None:
    """
    Send all logs to stdout in a single format.

    Args:
        level: Root log level (INFO, DEBUG, ...).
    """
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.basicConfig(level=level, handlers=[stdout_handler], force=True)

    # Every poll is an HTTP request; keep httpx quiet
    logging.getLogger("httpx").setLevel(logging.WARNING)
