"""
Streaming pipeline: events -> window -> enrichment -> sink.

Stages run as asyncio tasks connected by bounded queues:

    fold (1 task)          SlidingWindow.push per event, in arrival order
      -> enrich queue
    enrichment (N tasks)   Enricher.enrich per evicted event
      -> sink queue
    writer (1 task)        sink.write_many, batching what is already queued

A full queue blocks the stage feeding it, nothing is dropped. When the input
ends the window is closed and its final evictions flow through the same
stages before the run terminates. A fatal error in any stage cancels every
other stage and is re-raised to the caller.
"""

import asyncio
import logging
from collections.abc import AsyncIterable, Callable
from datetime import timedelta
from enum import Enum
from typing import Protocol

from collector import metrics
from collector.enricher import Enricher
from collector.models import EnrichedRecord, RawEvent
from collector.window import SlidingWindow
from core.logging import PeriodicStatsLogger, set_log_context

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 2048
DEFAULT_ENRICHMENT_WORKERS = 8
DEFAULT_SINK_BATCH_SIZE = 500

# End-of-stream marker on both queues
_STOP = object()


class RecordSink(Protocol):
    async def write_many(self, records: list[EnrichedRecord]) -> None: ...


class PipelineState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    FAILED = "failed"
    TERMINATED = "terminated"


_TRANSITIONS: dict[PipelineState, set[PipelineState]] = {
    PipelineState.IDLE: {PipelineState.RUNNING},
    PipelineState.RUNNING: {PipelineState.DRAINING, PipelineState.FAILED},
    PipelineState.DRAINING: {PipelineState.TERMINATED, PipelineState.FAILED},
    PipelineState.FAILED: {PipelineState.TERMINATED},
    PipelineState.TERMINATED: set(),
}


class Pipeline:
    """
    One run of the collector over one event stream.

    Usage:
        pipeline = Pipeline(window=timedelta(hours=2), enricher=enricher, sink=sink)
        await pipeline.run(events)
    """

    def __init__(
        self,
        window: timedelta,
        enricher: Enricher,
        sink: RecordSink,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        enrichment_workers: int = DEFAULT_ENRICHMENT_WORKERS,
        stats_interval_seconds: float = 0,
        sink_batch_size: int = DEFAULT_SINK_BATCH_SIZE,
        extra_stats: Callable[[], dict[str, int]] | None = None,
    ):
        """
        Args:
            window: Deduplication window
            enricher: Shared enricher used by every enrichment task
            sink: Destination of enriched records
            buffer_size: Capacity of each inter-stage queue
            enrichment_workers: Number of concurrent enrichment tasks
            stats_interval_seconds: Period of the stats log line, 0 disables it
            sink_batch_size: Upper bound of records per sink write
            extra_stats: Additional counters merged into get_stats()
        """
        if buffer_size < 1:
            raise ValueError(f"buffer_size must be >= 1, got {buffer_size}")
        if enrichment_workers < 1:
            raise ValueError(f"enrichment_workers must be >= 1, got {enrichment_workers}")

        self.window = SlidingWindow(window)
        self.enricher = enricher
        self.sink = sink
        self.buffer_size = buffer_size
        self.enrichment_workers = enrichment_workers
        self.stats_interval_seconds = stats_interval_seconds
        self.sink_batch_size = max(sink_batch_size, 1)
        self.extra_stats = extra_stats

        self._state = PipelineState.IDLE
        self._enrich_queue: asyncio.Queue | None = None
        self._sink_queue: asyncio.Queue | None = None
        self._active_workers = 0
        self._cache_stats: dict = {}

        self.events_received = 0
        self.evictions = 0
        self.records_written = 0

    @property
    def state(self) -> PipelineState:
        return self._state

    def _transition(self, new_state: PipelineState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(
                f"Invalid pipeline transition {self._state.value} -> {new_state.value}"
            )
        logger.debug(f"Pipeline {self._state.value} -> {new_state.value}")
        self._state = new_state

    def get_stats(self) -> dict[str, int]:
        stats = {
            "events_received": self.events_received,
            "evictions": self.evictions,
            "records_written": self.records_written,
            "enrichment_failures": self.enricher.failures,
            "cache_size": len(self.window),
        }
        cache_stats = self.enricher.cache.get_stats()
        stats["cache_hits"] = cache_stats["hits"]
        stats["cache_misses"] = cache_stats["misses"]
        if self.extra_stats is not None:
            stats.update(self.extra_stats())
        return stats

    async def run(self, events: AsyncIterable[RawEvent]) -> None:
        """
        Process the stream to its end, then flush the window.

        Raises:
            FatalError: Any run-terminating error from a stage
            RuntimeError: The pipeline was already run
        """
        self._transition(PipelineState.RUNNING)

        self._enrich_queue = asyncio.Queue(maxsize=self.buffer_size)
        self._sink_queue = asyncio.Queue(maxsize=self.buffer_size)
        self._active_workers = self.enrichment_workers

        logger.info(
            "Pipeline started",
            extra={
                "buffer_size": self.buffer_size,
                "workers": self.enrichment_workers,
                "state": self._state.value,
            },
        )

        tasks = [
            asyncio.create_task(self._fold(events), name="fold"),
            *(
                asyncio.create_task(self._enrich_worker(i), name=f"enrich-{i}")
                for i in range(self.enrichment_workers)
            ),
            asyncio.create_task(self._write_records(), name="sink-writer"),
        ]

        stats_logger = None
        if self.stats_interval_seconds > 0:
            stats_logger = PeriodicStatsLogger(
                self.stats_interval_seconds, self.get_stats, stage="pipeline"
            )
            stats_logger.start()

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            failed = next((t for t in done if not t.cancelled() and t.exception()), None)
            if failed is not None:
                raise failed.exception()
        except BaseException as e:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if self._state != PipelineState.FAILED:
                self._transition(PipelineState.FAILED)
            if isinstance(e, asyncio.CancelledError):
                logger.info("Pipeline cancelled, shutting down...")
            else:
                logger.error(
                    "Pipeline failed, all stages stopped",
                    extra={"state": self._state.value, "error_type": type(e).__name__},
                )
            raise
        finally:
            if stats_logger is not None:
                await stats_logger.stop()
            self._transition(PipelineState.TERMINATED)

        logger.info(
            "Pipeline finished",
            extra={"state": self._state.value, **self.get_stats()},
        )

    async def _fold(self, events: AsyncIterable[RawEvent]) -> None:
        set_log_context(stage="fold")

        async for event in events:
            self.events_received += 1
            metrics.EVENTS_RECEIVED.inc()
            await self._emit(self.window.push(event))
            metrics.WINDOW_SIZE.set(len(self.window))

        self._transition(PipelineState.DRAINING)
        final = self.window.close()
        logger.info(
            "Input exhausted, flushing window",
            extra={"evictions": len(final), "events_received": self.events_received},
        )
        await self._emit(final)
        metrics.WINDOW_SIZE.set(0)

        for _ in range(self.enrichment_workers):
            await self._enrich_queue.put(_STOP)

    async def _emit(self, evicted: frozenset[RawEvent]) -> None:
        for event in evicted:
            self.evictions += 1
            metrics.EVICTIONS.inc()
            logger.debug(
                "Evicted",
                extra={
                    "tenant_id": event.tenant_id,
                    "subject_id": event.subject_id,
                    "source_address": event.source_address,
                    "event_timestamp": event.timestamp,
                },
            )
            await self._enrich_queue.put(event)

    async def _enrich_worker(self, worker_index: int) -> None:
        set_log_context(stage="enrich", worker_id=f"enrich-{worker_index}")

        while True:
            item = await self._enrich_queue.get()
            if item is _STOP:
                break
            record = await self.enricher.enrich(item)
            await self._sink_queue.put(record)

        self._active_workers -= 1
        if self._active_workers == 0:
            await self._sink_queue.put(_STOP)

    async def _write_records(self) -> None:
        set_log_context(stage="sink")

        while True:
            batch: list[EnrichedRecord] = []
            stop = False

            item = await self._sink_queue.get()
            if item is _STOP:
                stop = True
            else:
                batch.append(item)

            while not stop and len(batch) < self.sink_batch_size and not self._sink_queue.empty():
                item = self._sink_queue.get_nowait()
                if item is _STOP:
                    stop = True
                else:
                    batch.append(item)

            if batch:
                await self.sink.write_many(batch)
                self.records_written += len(batch)
                metrics.RECORDS_WRITTEN.inc(len(batch))

            self._sync_queue_metrics()
            if stop:
                return

    def _sync_queue_metrics(self) -> None:
        metrics.QUEUE_DEPTH.labels(queue="enrich").set(self._enrich_queue.qsize())
        metrics.QUEUE_DEPTH.labels(queue="sink").set(self._sink_queue.qsize())
        cache_stats = self.enricher.cache.get_stats()
        metrics.record_cache_stats(cache_stats, self._cache_stats)
        self._cache_stats = cache_stats
