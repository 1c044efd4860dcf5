"""Synchronous HTTP client wrapper for outbound calls to advisory services.

Each request opens a fresh ``httpx.Client`` so callers never share
connection state across sweep threads. Errors either propagate or are
logged and turned into ``None``, depending on the configured strategy.
Retries are opt-in and only make sense for idempotent calls.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

import httpx

from config import settings

logger = logging.getLogger(__name__)


class ErrorStrategy(Enum):
    """Strategy for handling HTTP errors.

    - RAISE: Re-raise exceptions (default)
    - LOG_AND_RETURN_NONE: Log error and return None
    """

    RAISE = "raise"
    LOG_AND_RETURN_NONE = "log_and_return_none"


@dataclass
class ErrorConfig:
    """Configuration for error handling behavior."""

    strategy: ErrorStrategy = ErrorStrategy.RAISE
    log_level: int = logging.ERROR
    include_response_body: bool = False


@dataclass
class RetryConfig:
    """Configuration for retry logic with exponential backoff.

    Delay before retry ``n`` (0-based) is ``backoff_factor * 2**n`` seconds,
    capped at ``max_backoff``.
    """

    max_attempts: int = 3
    retry_status_codes: set[int] = field(default_factory=lambda: {500, 502, 503, 504})
    backoff_factor: float = 0.5
    max_backoff: float = 10.0
    retry_exceptions: tuple[type[Exception], ...] = (
        httpx.ConnectError,
        httpx.ReadTimeout,
        httpx.PoolTimeout,
    )


class HttpClient:
    """Synchronous HTTP client with configurable error handling and retries."""

    def __init__(
        self,
        timeout: float | None = None,
        connect_timeout: float | None = None,
        error_config: ErrorConfig | None = None,
        retry_config: RetryConfig | None = None,
    ):
        """Initialize the client; timeouts default to ``settings.http``."""
        self.timeout = timeout if timeout is not None else settings.http.timeout
        self.connect_timeout = (
            connect_timeout if connect_timeout is not None else settings.http.connect_timeout
        )
        self.error_config = error_config or ErrorConfig()
        self.retry_config = retry_config

    def get(self, url: str, **kwargs) -> httpx.Response | None:
        """Perform a GET request."""
        return self._request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> httpx.Response | None:
        """Perform a POST request."""
        return self._request("POST", url, **kwargs)

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=min(self.connect_timeout, self.timeout))
        )

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response | None:
        """Execute an HTTP request with error handling and optional retries."""
        if self.retry_config is None:
            return self._execute_once(method, url, **kwargs)
        return self._execute_with_retry(method, url, **kwargs)

    def _execute_once(self, method: str, url: str, **kwargs) -> httpx.Response | None:
        """Execute a single HTTP request with error handling."""
        try:
            with self._client() as client:
                response = client.request(method, url, **kwargs)
                response.raise_for_status()
                return response
        except (httpx.HTTPStatusError, httpx.RequestError) as e:
            return self._handle_error(e, method, url)

    def _execute_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response | None:
        """Execute an HTTP request with retry logic and exponential backoff."""
        assert self.retry_config is not None
        last_exception: Exception | None = None

        for attempt in range(self.retry_config.max_attempts):
            try:
                with self._client() as client:
                    response = client.request(method, url, **kwargs)
                    response.raise_for_status()
                    return response
            except httpx.HTTPStatusError as e:
                last_exception = e
                if e.response.status_code not in self.retry_config.retry_status_codes:
                    return self._handle_error(e, method, url)
                reason = f"status {e.response.status_code}"
            except self.retry_config.retry_exceptions as e:
                last_exception = e
                reason = type(e).__name__
            except httpx.RequestError as e:
                last_exception = e
                break

            if attempt + 1 >= self.retry_config.max_attempts:
                break
            delay = min(
                self.retry_config.backoff_factor * (2**attempt),
                self.retry_config.max_backoff,
            )
            logger.warning(
                "HTTP %s %s failed with %s, retrying in %.1fs (attempt %s/%s)",
                method,
                url,
                reason,
                delay,
                attempt + 1,
                self.retry_config.max_attempts,
            )
            time.sleep(delay)

        return self._handle_error(last_exception, method, url)

    def _handle_error(self, error: Exception, method: str, url: str) -> httpx.Response | None:
        """Handle HTTP errors according to configured strategy."""
        if self.error_config.strategy == ErrorStrategy.RAISE:
            raise error

        error_msg = f"HTTP {method} {url} failed: {error}"
        if isinstance(error, httpx.HTTPStatusError) and self.error_config.include_response_body:
            error_msg += f"\nResponse body: {error.response.text}"
        logger.log(self.error_config.log_level, error_msg)
        return None
