"""Metadata service REST client.

Fetches event metadata (notably the series an event is part of) from a
tenant-specific endpoint: the configured URI may contain an {organization}
placeholder which is replaced by the tenant of the event being enriched.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import aiohttp

from core.errors import MetadataConfigurationError, MetadataFormatError, MetadataRequestError

logger = logging.getLogger(__name__)

TENANT_PLACEHOLDER = "{organization}"
SERIES_FIELD = "is_part_of"
SLOW_REQUEST_SECONDS = 2.0


@dataclass(frozen=True, slots=True)
class TenantEndpoint:
    tenant_id: str
    base_url: str

    def event_url(self, subject_id: str) -> str:
        return f"{self.base_url}/events/{quote(subject_id, safe='')}"


def build_endpoint(uri_template: str, tenant_id: str | None) -> TenantEndpoint:
    """
    Resolve the URI template for one tenant.

    Raises:
        MetadataConfigurationError: The template needs a tenant and none was
            given, or the resulting URI is not an http(s) URL
    """
    if TENANT_PLACEHOLDER in uri_template:
        if not tenant_id:
            raise MetadataConfigurationError(
                f"Metadata URI {uri_template!r} contains {TENANT_PLACEHOLDER} but the event has no tenant"
            )
        base_url = uri_template.replace(TENANT_PLACEHOLDER, tenant_id)
    else:
        base_url = uri_template

    base_url = base_url.rstrip("/")
    if not base_url.startswith(("http://", "https://")):
        raise MetadataConfigurationError(
            f"Metadata URI must start with http:// or https://, got: {base_url!r}"
        )
    return TenantEndpoint(tenant_id=tenant_id or "", base_url=base_url)


def extract_series(body: dict[str, Any]) -> str | None:
    """The series reference of an event, or None when absent or not a string."""
    value = body.get(SERIES_FIELD)
    if isinstance(value, str):
        return value
    return None


class MetadataApiClient:
    """Async client for the metadata service with bounded concurrency."""

    def __init__(
        self,
        uri_template: str,
        user: str,
        password: str,
        timeout_seconds: float = 30,
        max_concurrent: int = 20,
    ):
        if not uri_template:
            raise MetadataConfigurationError("MetadataApiClient requires a URI")

        # Fail fast on a malformed template; the placeholder is checked per tenant
        build_endpoint(uri_template, "tenant" if TENANT_PLACEHOLDER in uri_template else None)

        self.uri_template = uri_template
        self.timeout_seconds = timeout_seconds
        self.max_concurrent = max_concurrent
        self._auth = aiohttp.BasicAuth(user, password)

        self._session: aiohttp.ClientSession | None = None
        self._semaphore: asyncio.Semaphore | None = None
        self._endpoints: dict[str, TenantEndpoint] = {}
        self._endpoints_lock = asyncio.Lock()
        self._closed = False

        logger.info(
            "MetadataApiClient initialized",
            extra={
                "http_url": self.uri_template,
                "workers": self.max_concurrent,
            },
        )

    async def __aenter__(self) -> "MetadataApiClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> None:
        if self._closed:
            raise RuntimeError("MetadataApiClient is closed, cannot create new session")
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_concurrent,
                limit_per_host=self.max_concurrent,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={"Accept": "application/json"},
            )
            self._semaphore = asyncio.Semaphore(self.max_concurrent)

    async def close(self) -> None:
        self._closed = True
        if self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)
        self._session = None

    async def endpoint_for(self, tenant_id: str | None) -> TenantEndpoint:
        """
        Get the endpoint of a tenant, creating it on first use.

        Lookups are lock-free; creation is serialized and re-checked under the
        lock so each tenant's endpoint is built once.
        """
        key = tenant_id or ""
        endpoint = self._endpoints.get(key)
        if endpoint is not None:
            return endpoint

        async with self._endpoints_lock:
            endpoint = self._endpoints.get(key)
            if endpoint is None:
                endpoint = build_endpoint(self.uri_template, tenant_id)
                self._endpoints[key] = endpoint
                logger.debug(
                    "Created metadata endpoint",
                    extra={"tenant_id": key, "http_url": endpoint.base_url},
                )
        return endpoint

    async def fetch_event(self, tenant_id: str | None, subject_id: str) -> dict[str, Any]:
        """
        GET {endpoint}/events/{subject_id} and return the decoded JSON object.

        Raises:
            MetadataConfigurationError: No endpoint can be built for the tenant
            MetadataRequestError: Non-2xx status, timeout or connection error
            MetadataFormatError: The body is not a JSON object
        """
        endpoint = await self.endpoint_for(tenant_id)
        await self._ensure_session()

        url = endpoint.event_url(subject_id)
        ctx = {"tenant_id": endpoint.tenant_id, "subject_id": subject_id, "http_url": url}

        async with self._semaphore:
            start_time = asyncio.get_event_loop().time()
            try:
                async with self._session.request(
                    "GET",
                    url,
                    auth=self._auth,
                    timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                ) as response:
                    duration = asyncio.get_event_loop().time() - start_time

                    if not 200 <= response.status < 300:
                        # Error pages come in any charset
                        detail = await response.text(errors="replace")
                        raise MetadataRequestError(
                            f"Metadata request failed ({response.status}): {url}",
                            status_code=response.status,
                            context={**ctx, "response_body": detail[:500]},
                        )

                    try:
                        body = await response.text()
                    except UnicodeDecodeError as e:
                        raise MetadataFormatError(
                            f"Metadata response is not valid text: {url}", cause=e
                        ) from e

                    log_level = logging.INFO if duration > SLOW_REQUEST_SECONDS else logging.DEBUG
                    log_msg = (
                        "Slow metadata request"
                        if duration > SLOW_REQUEST_SECONDS
                        else "Metadata request succeeded"
                    )
                    logger.log(
                        log_level,
                        log_msg,
                        extra={
                            **ctx,
                            "http_method": "GET",
                            "http_status": response.status,
                            "duration_ms": round(duration * 1000, 1),
                        },
                    )

            except TimeoutError as e:
                raise MetadataRequestError(
                    f"Metadata request timed out after {self.timeout_seconds}s: {url}",
                    cause=e,
                    context=ctx,
                ) from e

            except aiohttp.ClientError as e:
                raise MetadataRequestError(
                    f"Metadata connection error: {e}",
                    cause=e,
                    context=ctx,
                ) from e

        return self._decode(body, url)

    @staticmethod
    def _decode(body: str, url: str) -> dict[str, Any]:
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise MetadataFormatError(
                f"Metadata response is not valid JSON: {url}", body=body[:500], cause=e
            ) from e

        if not isinstance(data, dict):
            raise MetadataFormatError(
                f"Metadata response is not a JSON object: {url}", body=body[:500]
            )
        return data

    async def fetch_series(self, tenant_id: str | None, subject_id: str) -> str | None:
        """The series the subject is part of, or None when the service has none."""
        return extract_series(await self.fetch_event(tenant_id, subject_id))
