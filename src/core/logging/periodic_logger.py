"""Periodic statistics logging utility for long-running stages."""

import asyncio
import logging
from collections.abc import Callable

from core.logging.utilities import format_cycle_output

logger = logging.getLogger(__name__)


class PeriodicStatsLogger:
    """
    Logs cumulative counters every interval, with deltas since the last cycle.

    The get_stats callback returns a flat dict of cumulative integer counters.
    The keys events_received, records_written, events_skipped and
    enrichment_failures feed the human-readable message; every key is
    forwarded as a structured field.
    """

    def __init__(
        self,
        interval_seconds: float,
        get_stats: Callable[[], dict[str, int]],
        stage: str,
    ):
        self.interval_seconds = interval_seconds
        self.get_stats = get_stats
        self.stage = stage
        self._task: asyncio.Task | None = None
        self._cycle_count = 0
        self._previous: dict[str, int] = {}

    def start(self) -> None:
        if self._task is not None:
            logger.warning("Periodic logger already running")
            return

        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def log_cycle(self) -> None:
        """Emit one stats line and remember the counters for the next delta."""
        stats = self.get_stats()
        deltas = {key: value - self._previous.get(key, 0) for key, value in stats.items()}

        msg = format_cycle_output(
            cycle_count=self._cycle_count,
            received=stats.get("events_received", 0),
            written=stats.get("records_written", 0),
            skipped=stats.get("events_skipped", 0),
            failed=stats.get("enrichment_failures", 0),
            since_last=(
                {
                    "received": deltas.get("events_received", 0),
                    "written": deltas.get("records_written", 0),
                }
                if self._cycle_count
                else None
            ),
            interval_seconds=self.interval_seconds,
        )

        logger.info(
            msg,
            extra={
                "stage": self.stage,
                "cycle": self._cycle_count,
                **stats,
            },
        )
        self._previous = stats

    async def _run(self) -> None:
        self.log_cycle()
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                self._cycle_count += 1
                self.log_cycle()
        except asyncio.CancelledError:
            logger.debug("Periodic stats logger task cancelled")
            raise
