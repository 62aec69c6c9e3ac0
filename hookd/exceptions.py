"""
Exception types raised by the retention engine.
"""

from typing import Optional


class RetentionError(Exception):
    """Base class for retention engine errors."""


class StoreError(RetentionError):
    """The record store could not be read or written."""


class NotificationError(RetentionError):
    """A notification channel failed to deliver a message."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
