"""
Retrying HTTP client shared by the FundraiseUp and Blackbaud clients.

Idempotent requests (GET, PATCH, ...) are retried on rate limiting (429),
gateway/server errors and connect or read timeouts. A POST may already
have been committed when its response is lost, so it is only retried when
it never reached the server (connect failures) or was rejected with 429.
Retries back off exponentially with jitter; a 429 carrying Retry-After
waits as long as the server asks. Every other response, 4xx included, is
handed back to the caller, which owns the mapping to its API error.
"""

import random
import time
from typing import Any, Optional

import httpx

from .errors import RetryableHTTPError
from .log_config import get_logger

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

RETRYABLE_EXCEPTIONS = (
    httpx.ConnectTimeout,
    httpx.ConnectError,
    httpx.ReadTimeout,
)

IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE", "PATCH"})

# Failures that leave a non-idempotent request unprocessed by the server
SAFE_WRITE_EXCEPTIONS = (httpx.ConnectTimeout, httpx.ConnectError)
SAFE_WRITE_STATUS_CODES = {429}


def calculate_backoff_delay(attempt: int, base_delay: float = 0.5, max_delay: float = 60.0) -> float:
    """
    Delay before retry number `attempt` (0-based): base * 2^attempt capped
    at max_delay, plus up to 20% jitter.
    """
    delay = min(base_delay * (2 ** attempt), max_delay)
    return delay + random.uniform(0, 0.2 * delay)


def retry_after_seconds(response: httpx.Response) -> Optional[float]:
    """Seconds requested by a numeric Retry-After header, if any."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class HTTPClient:
    """
    Blocking httpx client with retries.

    One instance is shared by every API client of a run (and by the token
    cache), so connection pooling spans all of them.

    Args:
        max_retries: Retries after the first attempt
        base_delay: First backoff step in seconds
        max_delay: Backoff ceiling in seconds
        timeout: Per-request timeout in seconds
        **client_kwargs: Passed to httpx.Client (transport= in tests)
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        **client_kwargs
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._client = httpx.Client(timeout=client_kwargs.pop("timeout", timeout), **client_kwargs)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        self._client.close()

    def _wait(self, attempt: int, response: Optional[httpx.Response]) -> float:
        delay = None
        if response is not None and response.status_code == 429:
            delay = retry_after_seconds(response)
        if delay is None:
            return calculate_backoff_delay(attempt, self.base_delay, self.max_delay)
        return min(delay, self.max_delay)

    def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Raises:
            RetryableHTTPError: When every attempt failed transiently
            httpx.HTTPError: For transport errors that are not retried,
                including read timeouts on a POST
        """
        attempts = self.max_retries + 1
        if method.upper() in IDEMPOTENT_METHODS:
            retry_exceptions, retry_statuses = RETRYABLE_EXCEPTIONS, RETRYABLE_STATUS_CODES
        else:
            retry_exceptions, retry_statuses = SAFE_WRITE_EXCEPTIONS, SAFE_WRITE_STATUS_CODES
        # Exactly one of these describes the previous failed attempt.
        last_response: Optional[httpx.Response] = None
        last_exception: Optional[Exception] = None

        for attempt in range(attempts):
            if attempt:
                delay = self._wait(attempt - 1, last_response)
                logger.warning(
                    "Retrying HTTP request",
                    method=method,
                    url=url,
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    status_code=last_response.status_code if last_response is not None else None,
                    exception=str(last_exception) if last_exception is not None else None,
                    delay=round(delay, 2),
                )
                time.sleep(delay)

            try:
                response = self._client.request(method, url, **kwargs)
            except retry_exceptions as exc:
                last_response, last_exception = None, exc
                continue

            if response.status_code in retry_statuses:
                last_response, last_exception = response, None
                continue

            logger.debug("HTTP request", method=method, url=url, status_code=response.status_code)
            return response

        if last_response is not None:
            status = last_response.status_code
            logger.error("Giving up on HTTP request", method=method, url=url, status_code=status)
            raise RetryableHTTPError(f"{method} {url} failed after {attempts} attempts: HTTP {status}")

        logger.error("Giving up on HTTP request", method=method, url=url, exception=str(last_exception))
        raise RetryableHTTPError(
            f"{method} {url} failed after {attempts} attempts: {last_exception}"
        ) from last_exception

    def get(self, url: str, **kwargs) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> httpx.Response:
        return self.request("POST", url, **kwargs)

    def patch(self, url: str, **kwargs) -> httpx.Response:
        return self.request("PATCH", url, **kwargs)


def decode_json(response: httpx.Response) -> Any:
    """
    Parse a response body as JSON.

    Raises:
        ValueError: When the body is not valid JSON
    """
    try:
        return response.json()
    except ValueError as exc:
        raise ValueError(
            f"Invalid JSON response (HTTP {response.status_code}): {response.text[:200]!r}"
        ) from exc
