"""
InfluxDB sink for counted views.

Each EnrichedRecord becomes one point in InfluxDB line protocol:

    impressions,tenant=t,subject=s,channel=c,series=x value=1i 1549766302

The series tag is omitted when empty. Points are written over the InfluxDB
1.x HTTP API with Basic auth. Any failure to reach the database or to have a
write accepted is fatal for the run.
"""

import asyncio
import logging
from collections.abc import Sequence

import aiohttp

from collector.models import EnrichedRecord
from config.config import InfluxDBConfig
from core.errors import SinkConnectionError

logger = logging.getLogger(__name__)

_TAG_ESCAPES = str.maketrans({",": r"\,", " ": r"\ ", "=": r"\="})
_MEASUREMENT_ESCAPES = str.maketrans({",": r"\,", " ": r"\ "})


def escape_tag(value: str) -> str:
    return value.translate(_TAG_ESCAPES)


def to_line_protocol(record: EnrichedRecord, measurement: str = "impressions") -> str:
    """Encode one record as a line-protocol point with second precision."""
    tags = [
        ("tenant", record.tenant_id),
        ("subject", record.subject_id),
        ("channel", record.channel),
        ("series", record.series_id),
    ]
    tag_set = ",".join(f"{key}={escape_tag(value)}" for key, value in tags if value)
    head = measurement.translate(_MEASUREMENT_ESCAPES)
    if tag_set:
        head = f"{head},{tag_set}"
    return f"{head} value=1i {int(record.timestamp.timestamp())}"


class InfluxDBSink:
    """Async InfluxDB 1.x writer."""

    def __init__(self, config: InfluxDBConfig):
        self.config = config
        self.base_url = config.uri.rstrip("/")
        self._auth = aiohttp.BasicAuth(config.user, config.password)
        self._session: aiohttp.ClientSession | None = None
        self._params = {"db": config.db_name, "precision": "s"}
        if config.retention_policy:
            self._params["rp"] = config.retention_policy
        self.records_written = 0

    async def __aenter__(self) -> "InfluxDBSink":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def connect(self) -> None:
        """
        Open the HTTP session and check the server answers.

        Raises:
            SinkConnectionError: /ping failed
        """
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout_seconds),
            )
        try:
            await self.ping()
        except SinkConnectionError:
            await self.close()
            raise
        logger.info(
            f"Connected to InfluxDB database {self.config.db_name}",
            extra={"http_url": self.base_url},
        )

    async def ping(self) -> None:
        url = f"{self.base_url}/ping"
        try:
            async with self._session.request("GET", url, auth=self._auth) as response:
                if not 200 <= response.status < 300:
                    raise SinkConnectionError(
                        f"InfluxDB ping failed ({response.status}): {url}",
                        context={"status_code": response.status},
                    )
        except TimeoutError as e:
            raise SinkConnectionError(f"InfluxDB ping timed out: {url}", cause=e) from e
        except aiohttp.ClientError as e:
            raise SinkConnectionError(f"InfluxDB unreachable: {e}", cause=e) from e

    async def write(self, record: EnrichedRecord) -> None:
        await self.write_many([record])

    async def write_many(self, records: Sequence[EnrichedRecord]) -> None:
        """
        Write records in one request.

        Raises:
            SinkConnectionError: Connection error, timeout, or the write was rejected
        """
        if not records:
            return
        if self._session is None:
            raise RuntimeError("InfluxDBSink is not connected, call connect() first")

        url = f"{self.base_url}/write"
        body = "\n".join(to_line_protocol(r, self.config.measurement) for r in records)

        start_time = asyncio.get_event_loop().time()
        try:
            async with self._session.request(
                "POST",
                url,
                params=self._params,
                data=body.encode("utf-8"),
                auth=self._auth,
            ) as response:
                if not 200 <= response.status < 300:
                    detail = await response.text()
                    raise SinkConnectionError(
                        f"InfluxDB rejected write ({response.status}): {detail[:500]}",
                        context={"status_code": response.status},
                    )
        except TimeoutError as e:
            raise SinkConnectionError(
                f"InfluxDB write timed out after {self.config.timeout_seconds}s", cause=e
            ) from e
        except aiohttp.ClientError as e:
            raise SinkConnectionError(f"InfluxDB write failed: {e}", cause=e) from e

        self.records_written += len(records)
        logger.debug(
            "Wrote points to InfluxDB",
            extra={
                "records_written": len(records),
                "duration_ms": round((asyncio.get_event_loop().time() - start_time) * 1000, 1),
            },
        )

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)
        self._session = None
