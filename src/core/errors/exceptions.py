"""
Unified exception hierarchy for the impression collector.

Provides typed exceptions that carry both an error category (is this failure
scoped to one event, or to the whole run?) and, for fatal errors, the process
exit status the entry point terminates with.
"""

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.errors.exit_status import ExitStatus
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all collector errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for handling decisions
        exit_status: Process exit status used when this error ends the run
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN
    exit_status: ExitStatus = ExitStatus.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_fatal(self) -> bool:
        return self.category != ErrorCategory.TRANSIENT

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Per-event (recoverable) errors
# =============================================================================


class TransientError(PipelineError):
    """Base class for failures scoped to a single event."""

    category = ErrorCategory.TRANSIENT


class MetadataRequestError(TransientError):
    """Metadata request failed (non-2xx status, timeout, connection error)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.status_code = status_code


# =============================================================================
# Fatal (run-terminating) errors
# =============================================================================


class FatalError(PipelineError):
    """Base class for errors that terminate the run."""

    category = ErrorCategory.PERMANENT


class MetadataConfigurationError(FatalError):
    """The metadata endpoint cannot be built (e.g. tenant placeholder without tenant)."""

    exit_status = ExitStatus.METADATA_CONFIGURATION_ERROR


class MetadataFormatError(FatalError):
    """The metadata service returned a body that is not a JSON object."""

    exit_status = ExitStatus.METADATA_FORMAT_ERROR

    def __init__(
        self,
        message: str,
        body: str = "",
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.body = body


class MetadataUnavailableError(FatalError):
    """Too many consecutive metadata request failures."""

    exit_status = ExitStatus.METADATA_UNAVAILABLE


class SinkConnectionError(FatalError):
    """The time-series sink is unreachable or rejected a write."""

    exit_status = ExitStatus.SINK_RUNTIME_ERROR


class SinkConfigurationError(FatalError):
    """The sink configuration is unusable."""

    exit_status = ExitStatus.INVALID_SINK_CONFIG


class LogFileNotFoundError(FatalError):
    """The access log to analyze does not exist."""

    exit_status = ExitStatus.LOG_FILE_NOT_FOUND


class LogFileReadError(FatalError):
    """The access log exists but could not be read."""

    exit_status = ExitStatus.LOG_FILE_READ_ERROR


class LoggingConfigurationError(FatalError):
    """A logging configuration file was given but could not be applied."""

    exit_status = ExitStatus.LOG_CONFIGURATION_ERROR


class ConfigError(FatalError):
    """Base class for configuration file problems."""

    exit_status = ExitStatus.CONFIG_FILE_PARSE_ERROR


class ConfigFileNotFoundError(ConfigError):
    exit_status = ExitStatus.CONFIG_FILE_NOT_FOUND


class ConfigParseError(ConfigError):
    exit_status = ExitStatus.CONFIG_FILE_PARSE_ERROR


# =============================================================================
# Classification utilities
# =============================================================================


def is_transient_error(exc: BaseException) -> bool:
    """True if the failure is scoped to a single event and the run may continue."""
    return isinstance(exc, PipelineError) and exc.category == ErrorCategory.TRANSIENT


def exit_status_for(exc: BaseException) -> ExitStatus:
    """Map an exception that ended the run to its process exit status."""
    if isinstance(exc, PipelineError):
        return exc.exit_status
    return ExitStatus.UNKNOWN
