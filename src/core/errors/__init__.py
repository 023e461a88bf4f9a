"""
Error classification, exception hierarchy and exit statuses.

Provides:
- ExitStatus enum with one stable status per fatal failure mode
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
"""

from core.errors.exceptions import (
    ConfigError,
    ConfigFileNotFoundError,
    ConfigParseError,
    # Enums
    ErrorCategory,
    FatalError,
    LogFileNotFoundError,
    LogFileReadError,
    LoggingConfigurationError,
    MetadataConfigurationError,
    MetadataFormatError,
    MetadataRequestError,
    MetadataUnavailableError,
    # Base classes
    PipelineError,
    SinkConfigurationError,
    SinkConnectionError,
    TransientError,
    # Classification utilities
    exit_status_for,
    is_transient_error,
)
from core.errors.exit_status import ExitStatus

__all__ = [
    # Enums
    "ErrorCategory",
    "ExitStatus",
    # Base classes
    "PipelineError",
    "TransientError",
    "FatalError",
    # Per-event errors
    "MetadataRequestError",
    # Fatal errors
    "MetadataConfigurationError",
    "MetadataFormatError",
    "MetadataUnavailableError",
    "SinkConnectionError",
    "SinkConfigurationError",
    "LogFileNotFoundError",
    "LogFileReadError",
    "LoggingConfigurationError",
    "ConfigError",
    "ConfigFileNotFoundError",
    "ConfigParseError",
    # Classification utilities
    "is_transient_error",
    "exit_status_for",
]
