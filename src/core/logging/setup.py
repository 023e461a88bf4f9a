"""Logging setup and configuration.

Two modes:

- Default: console (human-readable) plus a JSON file under
  {log_dir}/{YYYY-MM-DD}/, rotated at midnight.
- log_to_stdout: a single console handler, for containers whose stdout is
  collected.

An operator-supplied dictConfig YAML, applied afterwards with
load_logging_config_file(), replaces both.
"""

import logging
import logging.config
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import yaml

from core.errors import LoggingConfigurationError
from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG
DEFAULT_BACKUP_COUNT = 7

# Chatty at INFO, only their warnings are worth keeping
NOISY_LOGGERS = [
    "aiohttp",
    "aiohttp.access",
    "asyncio",
    "urllib3",
]


def get_log_file_path(log_dir: Path, name: str = "collector") -> Path:
    """{log_dir}/{YYYY-MM-DD}/{name}_{MMDD}_{HHMM}.log for the current time."""
    now = datetime.now()
    return log_dir / f"{now:%Y-%m-%d}" / f"{name}_{now:%m%d}_{now:%H%M}.log"


def load_logging_config_file(path: str | Path) -> None:
    """
    Apply a logging.config.dictConfig document stored as YAML.

    Raises:
        LoggingConfigurationError: The file is missing, unparseable or rejected
            by dictConfig
    """
    path = Path(path)
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise LoggingConfigurationError(f"Logging configuration file not found: {path}", cause=e) from e
    except (OSError, yaml.YAMLError) as e:
        raise LoggingConfigurationError(f"Cannot read logging configuration {path}", cause=e) from e

    if not isinstance(document, dict):
        raise LoggingConfigurationError(f"Logging configuration {path} must be a mapping")

    document.setdefault("version", 1)
    try:
        logging.config.dictConfig(document)
    except (ValueError, TypeError, AttributeError, ImportError) as e:
        raise LoggingConfigurationError(f"Invalid logging configuration {path}", cause=e) from e


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(ConsoleFormatter())
    return handler


def _file_handler(log_file: Path, level: int, backup_count: int) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        log_file, when="midnight", backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(
    name: str = "collector",
    stage: str | None = None,
    log_dir: Path | None = None,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Configure the root logger and return the logger called `name`.

    Args:
        name: Logger name and log file prefix
        stage: Stage name injected into every record's context
        log_dir: Directory for log files (default: ./logs)
        console_level: Console handler level (default: INFO)
        file_level: File handler level (default: DEBUG)
        backup_count: Rotated files to keep (default: 7)
        suppress_noisy: Raise NOISY_LOGGERS to WARNING
        log_to_stdout: Console only, at the more verbose of the two levels
    """
    if stage:
        set_log_context(stage=stage)

    logger = logging.getLogger(name)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    if log_to_stdout:
        root.addHandler(_console_handler(min(console_level, file_level)))
        log_file = None
    else:
        log_file = get_log_file_path(log_dir or DEFAULT_LOG_DIR, name)
        root.addHandler(_file_handler(log_file, file_level, backup_count))
        root.addHandler(_console_handler(console_level))

    if suppress_noisy:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.debug("Logging initialized", extra={"log_file": str(log_file) if log_file else "stdout"})
    return logger
