"""
Core types shared across the collector.

This module provides the error classification enum used by the exception
hierarchy and by the components that decide whether a failure is fatal to the
run or only to a single event.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Failure scoped to one event or one request; the run continues
                   (e.g., metadata timeouts, 5xx responses)
        PERMANENT: Failure that will not go away by itself; the run terminates
                   (e.g., malformed upstream body, configuration issues)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
