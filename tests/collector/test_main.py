"""Tests for the collector entry point."""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from collector.__main__ import build_enricher, main, parse_args, run_collector
from config import DEFAULT_CONFIG_FILE, load_config
from core.errors import ExitStatus


class FakeInfluxDBSink:
    """Stands in for InfluxDBSink; remembers every instance."""

    instances: list["FakeInfluxDBSink"] = []

    def __init__(self, config):
        self.config = config
        self.records = []
        FakeInfluxDBSink.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def write_many(self, records):
        self.records.extend(records)


@pytest.fixture
def fake_sink():
    FakeInfluxDBSink.instances = []
    with patch("collector.__main__.InfluxDBSink", FakeInfluxDBSink):
        yield FakeInfluxDBSink


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("collector.__main__.setup_logging", return_value=logging.getLogger("collector")):
        yield


@pytest.fixture
def config_file(tmp_path, access_line):
    log_file = tmp_path / "access.log"
    log_file.write_text(
        "\n".join(
            [
                access_line(ip="10.0.0.1"),
                access_line(ip="10.0.0.1"),
                access_line(ip="10.0.0.2"),
                access_line(ip="10.0.0.3", status=404),
                "not a log line",
            ]
        )
        + "\n"
    )
    path = tmp_path / "collector.yaml"
    path.write_text(
        f"log_file: {log_file}\n"
        "influxdb:\n"
        "  db_name: impressions\n"
        "  user: collector\n"
        "  password: secret\n"
        "pipeline:\n"
        "  stats_interval_seconds: 0\n"
    )
    return path


class TestParseArgs:

    def test_defaults(self):
        args = parse_args([])

        assert args.config_file == DEFAULT_CONFIG_FILE
        assert args.from_beginning is False
        assert args.batch is False
        assert args.log_level == "INFO"
        assert args.log_dir == Path("logs")
        assert args.log_to_stdout is False
        assert args.metrics_port == 0

    def test_all_options(self):
        args = parse_args(
            [
                "--config-file", "/tmp/c.yaml",
                "--from-beginning",
                "--batch",
                "--log-level", "DEBUG",
                "--log-to-stdout",
                "--metrics-port", "9100",
            ]
        )

        assert args.config_file == Path("/tmp/c.yaml")
        assert args.from_beginning is True
        assert args.batch is True
        assert args.log_level == "DEBUG"
        assert args.metrics_port == 9100

    @pytest.mark.parametrize("argv", [["--bogus"], ["--log-level", "TRACE"], ["--metrics-port", "x"]])
    def test_invalid_arguments_exit_with_status_1(self, argv):
        with pytest.raises(SystemExit) as exc_info:
            parse_args(argv)
        assert exc_info.value.code == ExitStatus.INVALID_COMMAND_LINE_ARGS


class TestBuildEnricher:

    def test_without_metadata(self, config_file):
        enricher = build_enricher(load_config(config_file))
        assert enricher.client is None

    def test_with_metadata(self, config_file):
        with open(config_file, "a") as f:
            f.write(
                "metadata:\n"
                "  uri: https://{organization}.example.org\n"
                "  user: u\n"
                "  password: p\n"
                "  series_are_optional: true\n"
                "  cache_expiration_duration: PT5M\n"
            )

        enricher = build_enricher(load_config(config_file))

        assert enricher.client.uri_template == "https://{organization}.example.org"
        assert enricher.cache.enabled is True
        assert enricher.series_optional is True


class TestRunCollector:

    @pytest.mark.asyncio
    async def test_batch_run(self, config_file, fake_sink):
        pipeline = await run_collector(load_config(config_file), from_beginning=True, follow=False)

        (sink,) = fake_sink.instances
        assert sorted(r.source_address for r in sink.records) == ["10.0.0.1", "10.0.0.2"]
        stats = pipeline.get_stats()
        assert stats["events_received"] == 3
        assert stats["events_skipped"] == 2


class TestMain:

    def test_missing_config_file(self, tmp_path):
        assert main(["--config-file", str(tmp_path / "missing.yaml")]) == ExitStatus.CONFIG_FILE_NOT_FOUND

    def test_invalid_config_file(self, tmp_path):
        path = tmp_path / "collector.yaml"
        path.write_text("log_file: [unclosed\n")
        assert main(["--config-file", str(path)]) == ExitStatus.CONFIG_FILE_PARSE_ERROR

    def test_invalid_sink_config(self, tmp_path):
        path = tmp_path / "collector.yaml"
        path.write_text("log_file: /tmp/access.log\ninfluxdb:\n  user: u\n")
        assert main(["--config-file", str(path)]) == ExitStatus.INVALID_SINK_CONFIG

    def test_invalid_logging_config(self, config_file, tmp_path):
        logging_file = tmp_path / "logging.yaml"
        logging_file.write_text("- not a mapping\n")
        with open(config_file, "a") as f:
            f.write(f"adapter:\n  log_configuration_file: {logging_file}\n")

        assert main(["--config-file", str(config_file)]) == ExitStatus.LOG_CONFIGURATION_ERROR

    def test_missing_log_file(self, config_file, tmp_path, fake_sink):
        (tmp_path / "access.log").unlink()
        assert main(["--config-file", str(config_file), "--batch"]) == ExitStatus.LOG_FILE_NOT_FOUND

    def test_batch_run(self, config_file, fake_sink):
        status = main(["--config-file", str(config_file), "--from-beginning", "--batch"])

        assert status == ExitStatus.OK
        (sink,) = fake_sink.instances
        assert len(sink.records) == 2

    def test_unexpected_error(self, config_file):
        with patch("collector.__main__.run_collector", side_effect=RuntimeError("boom")):
            assert main(["--config-file", str(config_file)]) == ExitStatus.UNKNOWN
