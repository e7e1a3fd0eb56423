"""
Exception types shared by the sync and coverage pipelines.
"""
from typing import Optional


class InventorySyncError(Exception):
    """Base class for pipeline failures."""


class TransientIOError(InventorySyncError):
    """Network, API or store failure. Never retried; bubbles up to the merchant boundary."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SquareAuthError(InventorySyncError):
    """The merchant's access token was rejected (401/403)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DataShapeError(InventorySyncError):
    """A remote payload is missing fields we cannot default."""


class FatalDriverError(InventorySyncError):
    """Failure outside any per-merchant boundary; the run must abort."""
