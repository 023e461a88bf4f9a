"""Tests for PeriodicStatsLogger."""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from core.logging.periodic_logger import PeriodicStatsLogger


def _make_stats_callback(*snapshots):
    """Return a stats callback that yields the given snapshots in order."""
    remaining = list(snapshots)

    def get_stats():
        if len(remaining) > 1:
            return remaining.pop(0)
        return remaining[0]

    return get_stats


class TestPeriodicStatsLoggerInit:

    def test_stores_configuration(self):
        callback = _make_stats_callback({})
        psl = PeriodicStatsLogger(interval_seconds=30, get_stats=callback, stage="pipeline")

        assert psl.interval_seconds == 30
        assert psl.get_stats is callback
        assert psl.stage == "pipeline"
        assert psl._task is None
        assert psl._cycle_count == 0


class TestPeriodicStatsLoggerStart:

    def test_start_warns_if_already_running(self):
        psl = PeriodicStatsLogger(30, _make_stats_callback({}), "pipeline")
        psl._task = MagicMock()

        with patch("core.logging.periodic_logger.logger") as mock_logger:
            psl.start()
            mock_logger.warning.assert_called_once_with("Periodic logger already running")

    @pytest.mark.asyncio
    async def test_start_logs_initial_cycle(self):
        psl = PeriodicStatsLogger(3600, _make_stats_callback({"events_received": 0}), "pipeline")

        with patch("core.logging.periodic_logger.logger") as mock_logger:
            psl.start()
            await asyncio.sleep(0)
            await psl.stop()

        mock_logger.info.assert_called_once()
        assert mock_logger.info.call_args.args[0].startswith("Cycle 0:")
        assert psl._task is None


class TestPeriodicStatsLoggerStop:

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self):
        psl = PeriodicStatsLogger(30, _make_stats_callback({}), "pipeline")
        await psl.stop()
        assert psl._task is None


class TestLogCycle:

    def test_first_cycle_has_totals_only(self):
        psl = PeriodicStatsLogger(
            60,
            _make_stats_callback({"events_received": 1200, "records_written": 300}),
            "pipeline",
        )

        with patch("core.logging.periodic_logger.logger") as mock_logger:
            psl.log_cycle()

        msg = mock_logger.info.call_args.args[0]
        extra = mock_logger.info.call_args.kwargs["extra"]
        assert msg == "Cycle 0: received=1200, written=300"
        assert extra["cycle"] == 0
        assert extra["events_received"] == 1200
        assert extra["stage"] == "pipeline"

    def test_later_cycles_report_deltas(self):
        psl = PeriodicStatsLogger(
            60,
            _make_stats_callback(
                {"events_received": 960, "records_written": 240},
                {"events_received": 1200, "records_written": 300},
            ),
            "pipeline",
        )

        with patch("core.logging.periodic_logger.logger") as mock_logger:
            psl.log_cycle()
            psl._cycle_count = 1
            psl.log_cycle()

        msg = mock_logger.info.call_args.args[0]
        assert msg == (
            "Cycle 1: +240 received, +60 written | total: 1200 received, 300 written | 4.0 events/s"
        )
