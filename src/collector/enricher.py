"""
Series enrichment of deduplicated events.

The Enricher answers "which series is this subject part of?" from the
MetadataCache when it can and from the metadata service otherwise, and turns
an evicted RawEvent into the EnrichedRecord that gets counted.

Error policy:
- Request failures (non-2xx, timeout, connection) are scoped to the event:
  they are logged and the record is emitted with an empty series.
- A malformed body or an unusable endpoint is fatal and propagates.
- Optionally, too many request failures in a row is fatal as well.
"""

import logging

from collector import metrics
from collector.metadata_cache import MetadataCache
from collector.metadata_client import MetadataApiClient
from collector.models import EnrichedRecord, EventIdentity, RawEvent
from core.errors import MetadataRequestError, MetadataUnavailableError
from core.logging import log_exception

logger = logging.getLogger(__name__)


class Enricher:
    """
    Resolves series ids and builds sink-ready records.

    Shared by every enrichment worker; the only mutable state is the
    consecutive-failure counter and the (lock-guarded) cache.
    """

    def __init__(
        self,
        client: MetadataApiClient | None,
        cache: MetadataCache | None = None,
        series_optional: bool = False,
        max_consecutive_failures: int = 0,
    ):
        """
        Args:
            client: Metadata service client, None when the service is not configured
            cache: Lookup cache in front of the client (default: disabled cache)
            series_optional: Whether a subject without series is expected
            max_consecutive_failures: Request failures in a row that end the run, 0 disables
        """
        self.client = client
        self.cache = cache if cache is not None else MetadataCache()
        self.series_optional = series_optional
        self.max_consecutive_failures = max_consecutive_failures
        self._consecutive_failures = 0
        self._failures = 0

    @property
    def failures(self) -> int:
        """Total recoverable request failures since start."""
        return self._failures

    async def resolve(self, identity: EventIdentity) -> str:
        """
        Series id of the identity's subject, "" when there is none.

        Raises:
            MetadataRequestError: The remote lookup failed (recoverable)
            MetadataConfigurationError: No endpoint for the tenant (fatal)
            MetadataFormatError: Malformed response body (fatal)
        """
        if self.client is None:
            return ""

        key = (identity.tenant_id, identity.subject_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        series = await self.client.fetch_series(identity.tenant_id, identity.subject_id)
        if series is None:
            series = ""
            if not self.series_optional:
                logger.error(
                    "No series found for event",
                    extra={
                        "tenant_id": identity.tenant_id,
                        "subject_id": identity.subject_id,
                        "reason": "no_series",
                    },
                )

        self.cache.put(key, series)
        return series

    async def enrich(self, event: RawEvent) -> EnrichedRecord:
        """
        Build the record for an evicted event.

        Raises:
            MetadataUnavailableError: max_consecutive_failures reached
            MetadataConfigurationError, MetadataFormatError: see resolve()
        """
        try:
            series_id = await self.resolve(event.identity)
        except MetadataRequestError as e:
            self._record_failure(event, e)
            series_id = ""
        else:
            self._consecutive_failures = 0

        return EnrichedRecord.from_event(event, series_id)

    def _record_failure(self, event: RawEvent, error: MetadataRequestError) -> None:
        self._failures += 1
        self._consecutive_failures += 1
        metrics.ENRICHMENT_FAILURES.inc()

        log_exception(
            logger,
            error,
            "Metadata lookup failed, emitting record without series",
            include_traceback=False,
            tenant_id=event.tenant_id,
            subject_id=event.subject_id,
            status_code=error.status_code,
            consecutive_failures=self._consecutive_failures,
        )

        if 0 < self.max_consecutive_failures <= self._consecutive_failures:
            raise MetadataUnavailableError(
                f"Metadata service failed {self._consecutive_failures} times in a row",
                cause=error,
            ) from error
