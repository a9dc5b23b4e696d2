# tradesync/errors.py
"""
Error classes for tradesync.
"""


class TradeSyncError(Exception):
    """Base error for trading session operations."""
    pass


class BackendConnectionError(TradeSyncError):
    """The backend could not be reached or answered with something that is not JSON."""

    def __init__(self, method: str, path: str, reason: str):
        super().__init__(f"{method} {path} failed: {reason}")
        self.method = method
        self.path = path
        self.reason = reason
