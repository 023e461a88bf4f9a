"""Configuration loading for the impression collector.

Configuration is loaded from a single YAML file (default
/etc/impression-collector.yaml, override with --config-file).

Main Functions
--------------

    - load_config(): Load and validate the configuration file
    - parse_duration(): Parse an ISO-8601 duration setting

Usage Examples
--------------

    >>> from pathlib import Path
    >>> from config import load_config
    >>>
    >>> config = load_config(Path("collector.yaml"))
    >>> config.adapter.view_interval
    datetime.timedelta(seconds=7200)

Configuration Priority
---------------------

1. Environment variables referenced as ${VAR} or ${VAR:-default} in the YAML
2. YAML values
3. Dataclass defaults

See config.yaml.example at the repository root for every supported key.
"""

from config.config import (
    DEFAULT_CONFIG_FILE,
    AdapterConfig,
    CollectorConfig,
    InfluxDBConfig,
    MetadataConfig,
    PipelineSettings,
    load_config,
    parse_duration,
)

__all__ = [
    "load_config",
    "parse_duration",
    "DEFAULT_CONFIG_FILE",
    "CollectorConfig",
    "AdapterConfig",
    "MetadataConfig",
    "InfluxDBConfig",
    "PipelineSettings",
]
