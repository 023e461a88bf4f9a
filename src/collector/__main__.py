"""Impression collector entry point. Use --help for usage."""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from collector.enricher import Enricher
from collector.metadata_cache import MetadataCache
from collector.metadata_client import MetadataApiClient
from collector.metrics import start_metrics_server
from collector.parsing import LineParser, aparse_events
from collector.pipeline import Pipeline
from collector.sink import InfluxDBSink
from collector.source import tail_lines
from config import DEFAULT_CONFIG_FILE, CollectorConfig, load_config
from core.errors import ExitStatus, FatalError, LogFileNotFoundError
from core.logging import load_logging_config_file, log_exception, setup_logging

# Project root directory (where .env file is located)
# __main__.py is at src/collector/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)

# Set by signal handlers; ends the input stream so the window gets flushed
_shutdown_event: asyncio.Event | None = None

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def get_shutdown_event() -> asyncio.Event:
    global _shutdown_event
    if _shutdown_event is None:
        _shutdown_event = asyncio.Event()
    return _shutdown_event


def reset_shutdown_event() -> None:
    global _shutdown_event
    _shutdown_event = None


class _ArgumentParser(argparse.ArgumentParser):
    """Exits with INVALID_COMMAND_LINE_ARGS instead of argparse's status 2."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(int(ExitStatus.INVALID_COMMAND_LINE_ARGS), f"{self.prog}: error: {message}\n")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = _ArgumentParser(
        prog="impression-collector",
        description="Count unique media views from an access log and write them to InfluxDB",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Follow the configured access log from its current end
  impression-collector --config-file /etc/impression-collector.yaml

  # Analyze the whole file once, then exit
  impression-collector --from-beginning --batch

  # Containerized: log to stdout and expose Prometheus metrics
  impression-collector --log-to-stdout --metrics-port 8000
        """,
    )
    parser.add_argument(
        "--config-file",
        type=Path,
        default=DEFAULT_CONFIG_FILE,
        help=f"Path to the configuration file (default: {DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "--from-beginning",
        action="store_true",
        help="Read the log file from its first line instead of its current end",
    )
    parser.add_argument(
        "--batch",
        action="store_true",
        help="Stop at end of file instead of following it",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default="INFO",
        help="Console log level (default: INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=Path,
        default=Path("logs"),
        help="Directory for JSON log files (default: ./logs)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, no log files",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=0,
        help="Port for the Prometheus metrics endpoint, 0 disables it (default: 0)",
    )
    return parser.parse_args(argv)


def setup_signal_handlers(loop: asyncio.AbstractEventLoop):
    """Set up signal handlers for graceful shutdown.

    First CTRL+C: Sets shutdown event - input stops, the window is flushed to the sink.
    Second CTRL+C: Forces immediate shutdown by cancelling all tasks.
    Note: Signal handlers not supported on Windows - KeyboardInterrupt used instead."""

    def handle_signal(sig):
        logger.info("Received signal, initiating graceful shutdown", extra={"reason": sig.name})
        shutdown_event = get_shutdown_event()
        if not shutdown_event.is_set():
            shutdown_event.set()
        else:
            logger.warning("Received second signal, forcing immediate shutdown...")
            for task in asyncio.all_tasks(loop):
                task.cancel()

    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


def build_enricher(config: CollectorConfig) -> Enricher:
    metadata = config.metadata
    if metadata is None:
        return Enricher(client=None)

    client = MetadataApiClient(
        uri_template=metadata.uri,
        user=metadata.user,
        password=metadata.password,
        timeout_seconds=metadata.timeout_seconds,
        max_concurrent=metadata.max_concurrent,
    )
    cache = MetadataCache(
        ttl=metadata.cache_expiration_duration,
        max_entries=metadata.cache_max_entries,
    )
    return Enricher(
        client=client,
        cache=cache,
        series_optional=metadata.series_are_optional,
        max_consecutive_failures=metadata.max_consecutive_failures,
    )


async def run_collector(
    config: CollectorConfig,
    from_beginning: bool = False,
    follow: bool = True,
    shutdown_event: asyncio.Event | None = None,
) -> Pipeline:
    """Wire source, parser, enricher and sink together and run one pipeline."""
    log_file = Path(config.log_file)
    if not log_file.exists():
        raise LogFileNotFoundError(f"Log file not found: {log_file}")

    parser = LineParser.from_config(config.adapter)
    enricher = build_enricher(config)
    pipeline = None

    try:
        async with InfluxDBSink(config.influxdb) as sink:
            pipeline = Pipeline(
                window=config.adapter.view_interval,
                enricher=enricher,
                sink=sink,
                buffer_size=config.pipeline.buffer_size,
                enrichment_workers=config.pipeline.enrichment_workers,
                stats_interval_seconds=config.pipeline.stats_interval_seconds,
                extra_stats=lambda: {"events_skipped": parser.events_skipped},
            )
            lines = tail_lines(
                log_file,
                from_beginning=from_beginning,
                follow=follow,
                stop_event=shutdown_event,
            )
            await pipeline.run(aparse_events(lines, parser))
    finally:
        if enricher.client is not None:
            await enricher.client.close()

    return pipeline


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    load_dotenv(PROJECT_ROOT / ".env")

    global logger
    logger = setup_logging(
        name="collector",
        stage="main",
        log_dir=args.log_dir,
        console_level=getattr(logging, args.log_level),
        log_to_stdout=args.log_to_stdout,
    )

    try:
        config = load_config(args.config_file)
        if config.adapter.log_configuration_file:
            load_logging_config_file(config.adapter.log_configuration_file)
            logger.info("Logging configured", extra={"log_file": config.adapter.log_configuration_file})
    except FatalError as e:
        log_exception(logger, e, "Cannot start collector", include_traceback=False)
        return int(e.exit_status)

    if args.metrics_port:
        actual_port = start_metrics_server(args.metrics_port)
        logger.info(f"Metrics server started on port {actual_port}")

    reset_shutdown_event()
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    setup_signal_handlers(loop)

    try:
        loop.run_until_complete(
            run_collector(
                config,
                from_beginning=args.from_beginning,
                follow=not args.batch,
                shutdown_event=get_shutdown_event(),
            )
        )
    except FatalError as e:
        log_exception(logger, e, "Collector stopped on fatal error", include_traceback=False)
        return int(e.exit_status)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutdown forced, window not flushed")
        return int(ExitStatus.OK)
    except Exception as e:
        log_exception(logger, e, "Collector stopped on unexpected error")
        return int(ExitStatus.UNKNOWN)
    finally:
        loop.close()
        asyncio.set_event_loop(None)

    logger.info("Collector finished")
    return int(ExitStatus.OK)


if __name__ == "__main__":
    sys.exit(main())
