# courierhub/adapters/http.py
from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from opentelemetry.trace import Status, StatusCode

from courierhub.core.config import AppSettings, get_settings
from courierhub.obs.metrics import COURIER_CALLS, COURIER_LATENCY
from courierhub.obs.tracing import tracer
from courierhub.services.delivery_errors import TransientTransportError

log = logging.getLogger(__name__)


def response_json(resp: httpx.Response) -> Any:
    """Body as JSON, or None when the courier sent something else (HTML error pages...)."""
    try:
        return resp.json()
    except ValueError:
        return None


def extract_error_message(body: Any, fallback: str = "") -> str:
    """
    Pull a human-readable message out of a courier error body.

    Handles {"message": ...}, {"error": ...} and Laravel-style
    {"errors": {"field": ["..."]}} as returned by both Pathao and Steadfast.
    """
    if not isinstance(body, dict):
        return fallback

    parts = []
    for key in ("message", "error", "detail"):
        msg = body.get(key)
        if isinstance(msg, str) and msg.strip():
            parts.append(msg.strip())
            break

    errors = body.get("errors")
    if isinstance(errors, dict):
        for fld, val in errors.items():
            for text in val if isinstance(val, list) else [val]:
                if text:
                    parts.append(f"{fld}: {text}")
    elif isinstance(errors, list):
        parts.extend(str(e) for e in errors if e)

    return "; ".join(parts) if parts else fallback


class CourierHttp:
    """
    Shared request helper for courier adapters.

    - every call has a bounded timeout
    - idempotent calls (retry=True) are retried on timeout / transport error /
      5xx / 429 with exponential backoff + jitter
    - when retries run out the failure becomes TransientTransportError;
      4xx responses are handed back to the adapter for courier-specific mapping
    """

    def __init__(
        self,
        provider_type: str,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[AppSettings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        settings = settings or get_settings()
        self.provider_type = provider_type
        self.base_url = base_url.strip().rstrip("/")
        self.timeout = settings.COURIER_HTTP_TIMEOUT
        self.max_retries = settings.COURIER_MAX_RETRIES
        self.backoff = settings.COURIER_RETRY_BACKOFF
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def request(
        self,
        method: str,
        path: str,
        *,
        op: str,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        retry: bool = True,
    ) -> httpx.Response:
        client = self._get_client()
        attempts = 1 + (self.max_retries if retry else 0)
        last_error = ""

        for i in range(attempts):
            start = time.perf_counter()
            with tracer.start_as_current_span(
                f"courier.{op}",
                attributes={"courier.provider": self.provider_type, "http.method": method, "courier.attempt": i + 1},
            ) as span:
                try:
                    resp = await client.request(
                        method, self.url(path), headers=headers, json=json, timeout=self.timeout
                    )
                except httpx.TimeoutException:
                    last_error = f"timed out after {self.timeout}s"
                except httpx.TransportError as e:
                    last_error = f"{type(e).__name__}: {e}"
                else:
                    span.set_attribute("http.status_code", resp.status_code)
                    if resp.status_code >= 500 or resp.status_code == 429:
                        msg = extract_error_message(response_json(resp), resp.reason_phrase)
                        last_error = f"HTTP {resp.status_code} {msg}".strip()
                    else:
                        COURIER_LATENCY.labels(self.provider_type, op).observe(time.perf_counter() - start)
                        outcome = "ok" if resp.is_success else "client_error"
                        COURIER_CALLS.labels(self.provider_type, op, outcome).inc()
                        return resp
                span.set_status(Status(StatusCode.ERROR, last_error))

            COURIER_LATENCY.labels(self.provider_type, op).observe(time.perf_counter() - start)
            if i < attempts - 1:
                delay = self.backoff * (2**i) * (0.6 + 0.4 * random.random())
                log.warning(
                    "%s %s attempt %d/%d failed (%s); retrying in %.2fs",
                    self.provider_type, op, i + 1, attempts, last_error, delay,
                )
                await self._sleep(delay)

        COURIER_CALLS.labels(self.provider_type, op, "transient").inc()
        raise TransientTransportError(
            f"{self.provider_type} {op} failed: {last_error}", provider_type=self.provider_type
        )
