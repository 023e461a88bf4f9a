"""
Structured logging module.

Provides JSON logging with context propagation.
"""

from core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.periodic_logger import PeriodicStatsLogger
from core.logging.setup import (
    get_log_file_path,
    load_logging_config_file,
    setup_logging,
)
from core.logging.utilities import format_cycle_output, log_exception

__all__ = [
    # Setup
    "setup_logging",
    "load_logging_config_file",
    "get_log_file_path",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    # Utilities
    "log_exception",
    "format_cycle_output",
    "PeriodicStatsLogger",
]
