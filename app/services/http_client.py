"""Shared httpx plumbing for the Notion and Azure DevOps clients"""

import logging
import threading
from typing import Any, Callable, Optional

import httpx

from app.config import settings
from app.services.errors import (
    AuthError,
    NotFoundError,
    SyncCancelledError,
    TransientAdapterError,
)

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


def error_message(response: httpx.Response) -> str:
    """Best-effort human readable message from an error response."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error_description", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    text = (response.text or "").strip()
    return text[:500] or f"HTTP {response.status_code}"


class ApiClient:
    """Base class: one httpx.Client, retries on transient failures, typed errors."""

    service_name = "API"

    def __init__(
        self,
        base_url: str,
        *,
        headers: Optional[dict] = None,
        auth: Any = None,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
        max_attempts: int = 3,
        base_delay_s: float = 0.5,
        max_retry_delay_s: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.base_delay_s = base_delay_s
        self.max_retry_delay_s = (
            settings.http_max_retry_delay_seconds if max_retry_delay_s is None else max_retry_delay_s
        )
        # Retry waits end early once this is set.
        self.cancel_event = cancel_event or threading.Event()
        self.http = httpx.Client(
            base_url=self.base_url,
            headers=headers or {},
            auth=auth,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.http.close()

    @staticmethod
    def _should_retry(response: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
        """Retry predicate for transient failures."""
        if exc is not None:
            return isinstance(exc, (httpx.TimeoutException, httpx.TransportError))
        return response is not None and response.status_code in RETRY_STATUS_CODES

    def _retry_delay(self, response: Optional[httpx.Response], attempt: int) -> float:
        return min(self._requested_delay(response, attempt), self.max_retry_delay_s)

    def _requested_delay(self, response: Optional[httpx.Response], attempt: int) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    return max(0.0, float(retry_after))
                except ValueError:
                    pass
        return self.base_delay_s * (2 ** (attempt - 1))

    def _with_retries(self, fn: Callable[[], httpx.Response]) -> httpx.Response:
        """Run a request with small exponential backoff on transient errors."""
        attempt = 1
        while True:
            response: Optional[httpx.Response] = None
            exc: Optional[Exception] = None
            try:
                response = fn()
            except httpx.HTTPError as e:
                exc = e
            if exc is None and not self._should_retry(response, None):
                return response
            if attempt >= self.max_attempts or not self._should_retry(response, exc):
                if exc is not None:
                    raise TransientAdapterError(f"{self.service_name} request failed: {exc}") from exc
                return response
            delay = self._retry_delay(response, attempt)
            logger.debug(f"{self.service_name} transient failure, retrying in {delay:.2f}s")
            if self.cancel_event.wait(delay):
                raise SyncCancelledError(f"{self.service_name} request cancelled while waiting to retry")
            attempt += 1

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        """Issue a request and return the decoded JSON body (or None for empty bodies)."""
        response = self._with_retries(lambda: self.http.request(method, path, **kwargs))
        self._raise_for_status(response)
        if not response.content:
            return None
        return response.json()

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        message = error_message(response)
        code = response.status_code
        if code in (401, 403):
            raise AuthError(f"{self.service_name} rejected the credentials (HTTP {code}): {message}")
        if code == 404:
            raise NotFoundError(f"{self.service_name} resource not found: {message}")
        raise TransientAdapterError(f"{self.service_name} error (HTTP {code}): {message}", code)
