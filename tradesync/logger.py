# tradesync/logger.py
"""
Logging setup for applications that embed tradesync.

The library itself only emits records through the root `logging` functions
and never installs handlers. A host application (UI shell, script, service)
calls `setup_logging()` once at startup, before creating a TradingSession, to
get the component-prefixed records on stdout.
"""
import logging
import sys

from tradesync.config import config

LOG_FORMAT = "%(asctime)s.%(msecs)03dZ [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

def setup_logging(level: str | None = None) -> int:
    """
    Installs the stdout handler. `level` overrides LOG_LEVEL from the
    environment; unknown names fall back to INFO. Returns the level applied.
    """
    resolved = getattr(logging, (level or config.LOG_LEVEL).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=LOG_FORMAT, datefmt=DATE_FORMAT, stream=sys.stdout)
    return resolved
