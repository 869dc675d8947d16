from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
import time
from typing import Any

import httpx

from .config import Settings, TimeUnit
from .models import CreationDocumentData, build_creation_request
from .rate_limit import AsyncRateLimiter, RateLimiter


logger = logging.getLogger(__name__)

CREATE_DOCUMENT_PATH = "/lk/documents/create"
USER_AGENT = "crpt-client/0.1"


class CrptError(Exception):
    pass


class CrptTransportError(CrptError):
    pass


class CrptResponseError(CrptError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Registry responded with HTTP {status_code}")
        self.status_code = status_code
        self.body = body


@dataclass(slots=True)
class RequestTelemetry:
    total_requests: int = 0
    successful_requests: int = 0
    errors: int = 0
    total_latency_seconds: float = 0.0

    @property
    def mean_latency_ms(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return (self.total_latency_seconds / self.total_requests) * 1000.0

    def record(self, latency_seconds: float, ok: bool) -> None:
        self.total_requests += 1
        self.total_latency_seconds += latency_seconds
        if ok:
            self.successful_requests += 1
        else:
            self.errors += 1


def _resolve_limits(
    settings: Settings,
    time_unit: TimeUnit | str | None,
    request_limit: int | None,
) -> tuple[int, TimeUnit]:
    unit = TimeUnit.parse(time_unit) if time_unit is not None else settings.time_unit
    limit = request_limit if request_limit is not None else settings.request_limit
    return limit, unit


def _prepare_request(document: CreationDocumentData, signature: str) -> dict[str, Any]:
    body = build_creation_request(document, signature)
    return {
        "params": {"pg": document.product_group.name},
        "headers": {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {document.token}",
        },
        "json": body.model_dump(),
    }


def _response_body(response: httpx.Response) -> str:
    if 200 <= response.status_code < 300:
        return response.text
    logger.warning("Document creation rejected with HTTP %d", response.status_code)
    raise CrptResponseError(response.status_code, response.text)


class AsyncCrptApi:
    """Rate-limited document submission for asyncio callers.

    At most ``request_limit`` documents are sent per one ``time_unit``;
    extra callers wait in arrival order instead of failing.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        time_unit: TimeUnit | str | None = None,
        request_limit: int | None = None,
        telemetry: RequestTelemetry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.telemetry = telemetry or RequestTelemetry()
        limit, unit = _resolve_limits(self.settings, time_unit, request_limit)
        self.limiter = AsyncRateLimiter(max_calls=limit, period_seconds=unit)
        self._client = httpx.AsyncClient(
            base_url=self.settings.base_url,
            timeout=self.settings.timeout_seconds,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

    async def __aenter__(self) -> AsyncCrptApi:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def create_document(self, document: CreationDocumentData, signature: str) -> str:
        request = _prepare_request(document, signature)
        await self.limiter.acquire()

        started_at = time.monotonic()
        try:
            response = await self._client.post(CREATE_DOCUMENT_PATH, **request)
        except httpx.HTTPError as exc:
            self.telemetry.record(time.monotonic() - started_at, ok=False)
            raise CrptTransportError(str(exc)) from exc

        try:
            body = _response_body(response)
        except CrptResponseError:
            self.telemetry.record(time.monotonic() - started_at, ok=False)
            raise
        self.telemetry.record(time.monotonic() - started_at, ok=True)
        return body


class CrptApi:
    """Blocking counterpart of ``AsyncCrptApi``; one instance may be shared by threads."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        time_unit: TimeUnit | str | None = None,
        request_limit: int | None = None,
        telemetry: RequestTelemetry | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.telemetry = telemetry or RequestTelemetry()
        limit, unit = _resolve_limits(self.settings, time_unit, request_limit)
        self.limiter = RateLimiter(max_calls=limit, period_seconds=unit)
        self._telemetry_lock = threading.Lock()
        self._client = httpx.Client(
            base_url=self.settings.base_url,
            timeout=self.settings.timeout_seconds,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        )

    def __enter__(self) -> CrptApi:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def create_document(self, document: CreationDocumentData, signature: str) -> str:
        request = _prepare_request(document, signature)
        self.limiter.acquire()

        started_at = time.monotonic()
        try:
            response = self._client.post(CREATE_DOCUMENT_PATH, **request)
        except httpx.HTTPError as exc:
            self._record(started_at, ok=False)
            raise CrptTransportError(str(exc)) from exc

        try:
            body = _response_body(response)
        except CrptResponseError:
            self._record(started_at, ok=False)
            raise
        self._record(started_at, ok=True)
        return body

    def _record(self, started_at: float, ok: bool) -> None:
        with self._telemetry_lock:
            self.telemetry.record(time.monotonic() - started_at, ok=ok)
