"""
Impression collector: counts unique media views from web server access logs.

Access-log lines are parsed into events, repeated hits of the same viewer on
the same subject are collapsed inside a sliding time window, each resulting
view is enriched with its series from the metadata service and written to
InfluxDB.

Modules:
    models           - EventIdentity, RawEvent, EnrichedRecord
    window           - Sliding-window deduplication
    metadata_cache   - TTL cache of series lookups
    metadata_client  - Metadata service REST client
    enricher         - Series resolution and record building
    parsing          - Access-log and request-line parsing, event filter
    source           - Log file tailing
    sink             - InfluxDB line-protocol writer
    pipeline         - Stage orchestration with backpressure
    metrics          - Prometheus metrics
"""

from collector.models import EnrichedRecord, EventIdentity, RawEvent
from collector.window import Cache, SlidingWindow, advance

__all__ = [
    "EventIdentity",
    "RawEvent",
    "EnrichedRecord",
    "Cache",
    "SlidingWindow",
    "advance",
]
