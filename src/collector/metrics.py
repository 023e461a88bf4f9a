"""
Prometheus metrics for the impression collector.

Focused on essential metrics:
- Events accepted from the log and evictions from the window
- Records written to the sink
- Enrichment failures and metadata cache effectiveness
- Window and queue sizes
"""

import logging
import socket

from prometheus_client import REGISTRY, Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)

EVENTS_RECEIVED = Counter(
    "impression_collector_events_received_total",
    "Accepted access-log events folded into the window",
)
EVICTIONS = Counter(
    "impression_collector_evictions_total",
    "Identities evicted from the window (counted views)",
)
RECORDS_WRITTEN = Counter(
    "impression_collector_records_written_total",
    "Records written to the sink",
)
ENRICHMENT_FAILURES = Counter(
    "impression_collector_enrichment_failures_total",
    "Metadata lookups that failed and produced a record without series",
)
METADATA_CACHE_LOOKUPS = Counter(
    "impression_collector_metadata_cache_lookups_total",
    "Metadata cache lookups by result",
    ["result"],
)
WINDOW_SIZE = Gauge(
    "impression_collector_window_identities",
    "Identities currently held in the window",
)
QUEUE_DEPTH = Gauge(
    "impression_collector_queue_depth",
    "Items waiting in a pipeline queue",
    ["queue"],
)


def record_cache_stats(stats: dict, previous: dict | None = None) -> None:
    """Advance the cache lookup counters by the change since `previous`."""
    previous = previous or {}
    for result, key in (("hit", "hits"), ("miss", "misses")):
        delta = stats.get(key, 0) - previous.get(key, 0)
        if delta > 0:
            METADATA_CACHE_LOOKUPS.labels(result=result).inc(delta)


def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    try:
        start_http_server(preferred_port, registry=REGISTRY)
        return preferred_port
    except OSError as e:
        if e.errno != 98:
            raise
        logger.info("Metrics port already in use, finding available port")

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            s.listen(1)
            available_port = s.getsockname()[1]

        start_http_server(available_port, registry=REGISTRY)
        return available_port
