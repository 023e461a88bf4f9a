"""Impression collector configuration from YAML file.

Loads a single YAML file with all settings in one place:
- The access log to analyze
- Adapter settings (window, filters, log grammar)
- Metadata service and its cache (optional section)
- InfluxDB sink
- Pipeline sizing

Environment variables ARE supported using ${VAR_NAME} and ${VAR_NAME:-default}
syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import TypeAdapter, ValidationError

from core.errors import ConfigFileNotFoundError, ConfigParseError, SinkConfigurationError

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("/etc/impression-collector.yaml")

DEFAULT_VIEW_INTERVAL = timedelta(hours=2)
DEFAULT_LOG_DATE_FORMAT = "%d/%b/%Y:%H:%M:%S %z"

_DURATION_ADAPTER = TypeAdapter(timedelta)


def load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file and return dict."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def parse_duration(value: Any, key: str) -> timedelta:
    """Parse an ISO-8601 duration such as PT2H (also accepts seconds as a number)."""
    if isinstance(value, timedelta):
        return value
    try:
        return _DURATION_ADAPTER.validate_python(value)
    except ValidationError as e:
        raise ValueError(f"{key}: invalid duration '{value}'") from e


def _parse_bool(value: Any, key: str) -> bool:
    # Env expansion turns booleans into strings
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"{key}: must be true or false, got '{value}'")


def _parse_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{key}: must be an integer, got '{value}'")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{key}: must be an integer, got '{value}'") from e


def _parse_float(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{key}: must be a number, got '{value}'") from e


def _string_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item) for item in value]
    raise ValueError(f"{key}: must be a list of strings")


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' must be a mapping")
    return section


@dataclass
class AdapterConfig:
    """How access-log lines become events, and how long a view lasts."""

    view_interval: timedelta = DEFAULT_VIEW_INTERVAL
    invalid_user_agents: list[str] = field(default_factory=list)
    valid_file_extensions: list[str] = field(default_factory=list)
    invalid_publication_channels: list[str] = field(default_factory=list)
    log_line_pattern: str | None = None
    log_date_format: str = DEFAULT_LOG_DATE_FORMAT
    request_line_pattern: str | None = None
    log_configuration_file: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdapterConfig":
        return cls(
            view_interval=parse_duration(
                data.get("view_interval", DEFAULT_VIEW_INTERVAL), "adapter.view_interval"
            ),
            invalid_user_agents=_string_list(
                data.get("invalid_user_agents"), "adapter.invalid_user_agents"
            ),
            valid_file_extensions=_string_list(
                data.get("valid_file_extensions"), "adapter.valid_file_extensions"
            ),
            invalid_publication_channels=_string_list(
                data.get("invalid_publication_channels"), "adapter.invalid_publication_channels"
            ),
            log_line_pattern=data.get("log_line_pattern") or None,
            log_date_format=data.get("log_date_format") or DEFAULT_LOG_DATE_FORMAT,
            request_line_pattern=data.get("request_line_pattern") or None,
            log_configuration_file=data.get("log_configuration_file") or None,
        )

    def validate(self) -> None:
        for key in ("log_line_pattern", "request_line_pattern"):
            pattern = getattr(self, key)
            if pattern is None:
                continue
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"adapter.{key}: invalid regular expression: {e}") from e


@dataclass
class MetadataConfig:
    """Metadata service connection and cache settings.

    The uri may contain an {organization} placeholder, replaced by the tenant
    of each event.
    """

    uri: str
    user: str
    password: str
    series_are_optional: bool = False
    cache_expiration_duration: timedelta = timedelta(0)
    cache_max_entries: int = 0
    timeout_seconds: float = 30.0
    max_concurrent: int = 20
    max_consecutive_failures: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetadataConfig | None":
        """Build the section, or None when it is absent or empty."""
        if not data:
            return None
        required = {key: data.get(key) for key in ("uri", "user", "password")}
        missing = [key for key, value in required.items() if not value]
        if missing:
            raise ValueError(
                f"metadata section is incomplete, missing: {', '.join(missing)} "
                "(set uri, user and password, or remove the section)"
            )

        return cls(
            uri=str(required["uri"]),
            user=str(required["user"]),
            password=str(required["password"]),
            series_are_optional=_parse_bool(
                data.get("series_are_optional", False), "metadata.series_are_optional"
            ),
            cache_expiration_duration=parse_duration(
                data.get("cache_expiration_duration", timedelta(0)),
                "metadata.cache_expiration_duration",
            ),
            cache_max_entries=_parse_int(data.get("cache_max_entries", 0), "metadata.cache_max_entries"),
            timeout_seconds=_parse_float(data.get("timeout_seconds", 30), "metadata.timeout_seconds"),
            max_concurrent=_parse_int(data.get("max_concurrent", 20), "metadata.max_concurrent"),
            max_consecutive_failures=_parse_int(
                data.get("max_consecutive_failures", 0), "metadata.max_consecutive_failures"
            ),
        )

    def validate(self) -> None:
        if self.cache_expiration_duration < timedelta(0):
            raise ValueError(
                "metadata.cache_expiration_duration must not be negative, "
                f"got {self.cache_expiration_duration}"
            )
        _validate_min(self.cache_max_entries, 0, "metadata.cache_max_entries")
        _validate_min(self.max_consecutive_failures, 0, "metadata.max_consecutive_failures")
        _validate_range(self.max_concurrent, 1, 1000, "metadata.max_concurrent")
        if self.timeout_seconds <= 0:
            raise ValueError(f"metadata.timeout_seconds must be > 0, got {self.timeout_seconds}")


@dataclass
class InfluxDBConfig:
    """InfluxDB sink settings."""

    uri: str = "http://localhost:8086"
    db_name: str = ""
    user: str = ""
    password: str = ""
    retention_policy: str | None = None
    measurement: str = "impressions"
    timeout_seconds: float = 30.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InfluxDBConfig":
        return cls(
            uri=str(data.get("uri") or "http://localhost:8086"),
            db_name=str(data.get("db_name") or ""),
            user=str(data.get("user") or ""),
            password=str(data.get("password") or ""),
            retention_policy=data.get("retention_policy") or None,
            measurement=str(data.get("measurement") or "impressions"),
            timeout_seconds=_parse_float(data.get("timeout_seconds", 30), "influxdb.timeout_seconds"),
        )

    def validate(self) -> None:
        """
        Raises:
            SinkConfigurationError: A required sink setting is missing or invalid
        """
        if not self.db_name:
            raise SinkConfigurationError("influxdb.db_name is required")
        if not self.user:
            raise SinkConfigurationError("influxdb.user is required")
        if not self.uri.startswith(("http://", "https://")):
            raise SinkConfigurationError(f"influxdb.uri must be an http(s) URL, got '{self.uri}'")
        if self.timeout_seconds <= 0:
            raise SinkConfigurationError(
                f"influxdb.timeout_seconds must be > 0, got {self.timeout_seconds}"
            )


@dataclass
class PipelineSettings:
    """Queue and worker sizing."""

    buffer_size: int = 2048
    enrichment_workers: int = 8
    stats_interval_seconds: float = 60.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineSettings":
        return cls(
            buffer_size=_parse_int(data.get("buffer_size", 2048), "pipeline.buffer_size"),
            enrichment_workers=_parse_int(
                data.get("enrichment_workers", 8), "pipeline.enrichment_workers"
            ),
            stats_interval_seconds=_parse_float(
                data.get("stats_interval_seconds", 60), "pipeline.stats_interval_seconds"
            ),
        )

    def validate(self) -> None:
        _validate_min(self.buffer_size, 1, "pipeline.buffer_size")
        _validate_range(self.enrichment_workers, 1, 256, "pipeline.enrichment_workers")
        if self.stats_interval_seconds < 0:
            raise ValueError(
                f"pipeline.stats_interval_seconds must be >= 0, got {self.stats_interval_seconds}"
            )


def _validate_min(value: float, min_value: float, key: str) -> None:
    if value < min_value:
        raise ValueError(f"{key} must be >= {min_value}, got {value}")


def _validate_range(value: float, min_value: float, max_value: float, key: str) -> None:
    if not (min_value <= value <= max_value):
        raise ValueError(f"{key} must be between {min_value} and {max_value}, got {value}")


@dataclass
class CollectorConfig:
    """Complete collector configuration.

    Configuration structure:
        log_file: /var/log/nginx/access.log
        adapter: {...}      # window, filters, log grammar
        metadata: {...}     # optional; absent disables enrichment
        influxdb: {...}     # sink
        pipeline: {...}     # buffer and worker sizing
    """

    log_file: str
    influxdb: InfluxDBConfig
    adapter: AdapterConfig = field(default_factory=AdapterConfig)
    metadata: MetadataConfig | None = None
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CollectorConfig":
        return cls(
            log_file=str(data.get("log_file") or ""),
            adapter=AdapterConfig.from_dict(_section(data, "adapter")),
            metadata=MetadataConfig.from_dict(_section(data, "metadata")),
            influxdb=InfluxDBConfig.from_dict(_section(data, "influxdb")),
            pipeline=PipelineSettings.from_dict(_section(data, "pipeline")),
        )

    def validate(self) -> None:
        """Validate configuration for correctness and constraints.

        Raises:
            ValueError: A general setting is invalid
            SinkConfigurationError: The influxdb section is invalid
        """
        if not self.log_file:
            raise ValueError("log_file is required")
        self.adapter.validate()
        if self.metadata is not None:
            self.metadata.validate()
        self.pipeline.validate()
        self.influxdb.validate()

    def redacted(self) -> dict[str, Any]:
        """Configuration as a plain dict with passwords masked, for display."""
        data = asdict(self)
        for section in ("metadata", "influxdb"):
            if data.get(section) and data[section].get("password"):
                data[section]["password"] = "********"
        return data


def load_config(config_path: Path | None = None) -> CollectorConfig:
    """Load and validate the collector configuration.

    Raises:
        ConfigFileNotFoundError: The file does not exist
        ConfigParseError: The file is not valid YAML or a setting is invalid
        SinkConfigurationError: The influxdb section is invalid
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from file: {config_path}")
    try:
        yaml_data = load_yaml(config_path)
    except yaml.YAMLError as e:
        raise ConfigParseError(f"Cannot parse configuration file {config_path}", cause=e) from e
    except OSError as e:
        raise ConfigParseError(f"Cannot read configuration file {config_path}", cause=e) from e

    if not isinstance(yaml_data, dict):
        raise ConfigParseError(f"Configuration file {config_path} must contain a mapping")

    yaml_data = _expand_env_vars(yaml_data)

    try:
        config = CollectorConfig.from_dict(yaml_data)
        logger.debug("Validating configuration...")
        config.validate()
    except ValueError as e:
        raise ConfigParseError(f"Invalid configuration in {config_path}: {e}", cause=e) from e

    logger.debug(
        "Configuration loaded",
        extra={
            "log_file": config.log_file,
            "buffer_size": config.pipeline.buffer_size,
            "workers": config.pipeline.enrichment_workers,
        },
    )
    if config.metadata is None:
        logger.info("Metadata service not configured, series enrichment disabled")

    return config


def _cli_main() -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    from core.errors import FatalError

    parser = argparse.ArgumentParser(
        description="Impression collector configuration tool",
        epilog="Example: python -m config.config --config collector.yaml --show",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help=f"Path to the configuration file (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "--show",
        action="store_true",
        help="Display the loaded configuration (passwords masked)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format instead of YAML",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    try:
        config = load_config(config_path=args.config)
    except FatalError as e:
        print(f"✗ {e}", file=sys.stderr)
        return int(e.exit_status)

    print("✓ Configuration validation passed")
    if args.show:
        data = config.redacted()
        if args.json:
            print(json.dumps(data, indent=2, default=str))
        else:
            print(yaml.safe_dump(json.loads(json.dumps(data, default=str)), sort_keys=False))
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
