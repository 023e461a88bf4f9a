"""
Core library: infrastructure shared by the collector components.

Modules:
    errors      - Exception hierarchy, error classification and exit statuses
    logging     - Structured JSON logging with context propagation

Design Principles:
    - No dependencies on the collector domain
    - All modules are independently testable
    - Type hints throughout
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
