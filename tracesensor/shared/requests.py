"""
HTTP request utilities for the collector and metadata endpoints.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
import time
from typing import TYPE_CHECKING, Any

import httpx

from tracesensor.shared.exceptions import (
    SensorException,
    SensorNetworkError,
    SensorRequestError,
    SensorTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Collection

logger = logging.getLogger("tracesensor.http")

_DEFAULT_TIMEOUT = 10.0
_DEFAULT_LIMITS = httpx.Limits(
    max_connections=20,
    max_keepalive_connections=10,
    keepalive_expiry=10.0,
)
DEFAULT_RETRY_STATUS_CODES = (502, 503, 504)


def backoff_delay(attempt: int, retry_delay: float, max_retry_delay: float | None = None) -> float:
    """Exponential backoff for the given 1-based attempt, optionally capped."""
    delay = retry_delay * (2 ** (attempt - 1))
    if max_retry_delay is not None:
        delay = min(delay, max_retry_delay)
    return delay


async def _handle_retry(
    attempt: int,
    max_retries: int,
    retry_delay: float,
    url: str,
    error_msg: str,
    max_retry_delay: float | None = None,
) -> None:
    """Helper function to handle retry logic and logging."""
    retry_time = backoff_delay(attempt, retry_delay, max_retry_delay)
    logger.debug(
        "%s from %s, retrying in %.2f seconds (attempt %d/%d)",
        error_msg,
        url,
        retry_time,
        attempt,
        max_retries,
    )
    await asyncio.sleep(retry_time)


def _should_retry_status(status_code: int, retry_status_codes: Collection[int] | None) -> bool:
    if 200 <= status_code < 300:
        return False
    if retry_status_codes is None:
        return True
    return status_code in retry_status_codes


def _decode(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    result = response.json()
    if isinstance(result, dict):
        return result
    return {"items": result}


def _with_attempts(error: SensorException, attempt: int) -> SensorException:
    error.attempts = attempt
    return error


def create_async_client(
    timeout: float = _DEFAULT_TIMEOUT, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    """Create an httpx AsyncClient with standard configuration."""
    return httpx.AsyncClient(timeout=timeout, limits=_DEFAULT_LIMITS, transport=transport)


def create_sync_client(
    timeout: float = _DEFAULT_TIMEOUT, transport: httpx.BaseTransport | None = None
) -> httpx.Client:
    """Create an httpx Client with standard configuration."""
    return httpx.Client(timeout=timeout, limits=_DEFAULT_LIMITS, transport=transport)


async def make_request(
    method: str,
    url: str,
    json: Any | None = None,
    headers: dict[str, str] | None = None,
    max_retries: int = 2,
    retry_delay: float = 0.5,
    *,
    max_retry_delay: float | None = None,
    retry_status_codes: Collection[int] | None = DEFAULT_RETRY_STATUS_CODES,
    parse_json: bool = True,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """
    Make an asynchronous HTTP request.

    Args:
        method: HTTP method (GET, POST, etc.)
        url: Full URL for the request
        json: Optional JSON serializable data
        headers: Headers attached to the request
        max_retries: Maximum number of retries after the first attempt
        retry_delay: Base delay for exponential backoff
        max_retry_delay: Upper bound for a single backoff delay
        retry_status_codes: Statuses worth retrying, None retries every non-2xx status
        parse_json: Decode the response body, otherwise only the status decides success
        client: Optional custom httpx.AsyncClient

    Returns:
        dict: JSON response from the server, empty for bodiless responses or when
            ``parse_json`` is False

    Raises:
        SensorRequestError: If the request fails with a non-retryable status code,
            or with a retryable one after all retries.
        SensorNetworkError: If there are network-related issues after all retries.
        SensorTimeoutError: If the request keeps timing out.

    Every raised exception carries the number of requests made in ``attempts``.
    """
    attempt = 0
    should_close_client = False

    if client is None:
        client = create_async_client()
        should_close_client = True

    try:
        while attempt <= max_retries:
            attempt += 1

            try:
                response = await client.request(method=method, url=url, json=json, headers=headers)

                if (
                    _should_retry_status(response.status_code, retry_status_codes)
                    and attempt <= max_retries
                ):
                    await _handle_retry(
                        attempt,
                        max_retries,
                        retry_delay,
                        url,
                        f"Received status {response.status_code}",
                        max_retry_delay,
                    )
                    continue

                response.raise_for_status()
                return _decode(response) if parse_json else {}
            except httpx.HTTPStatusError as e:
                raise _with_attempts(SensorRequestError.from_httpx_error(e), attempt) from None
            except httpx.TimeoutException as e:
                if attempt <= max_retries:
                    await _handle_retry(
                        attempt, max_retries, retry_delay, url, f"Timeout: {e}", max_retry_delay
                    )
                    continue
                raise _with_attempts(
                    SensorTimeoutError(f"Request timed out: {e!s}"), attempt
                ) from None
            except httpx.RequestError as e:
                if attempt <= max_retries:
                    await _handle_retry(
                        attempt,
                        max_retries,
                        retry_delay,
                        url,
                        f"Network error: {e}",
                        max_retry_delay,
                    )
                    continue
                raise _with_attempts(SensorNetworkError(f"Network error: {e!s}"), attempt) from None
            except ssl.SSLError as e:
                if attempt <= max_retries:
                    await _handle_retry(
                        attempt, max_retries, retry_delay, url, f"SSL error: {e}", max_retry_delay
                    )
                    continue
                raise _with_attempts(SensorNetworkError(f"SSL error: {e!s}"), attempt) from None
            except ValueError as e:
                raise _with_attempts(
                    SensorRequestError(f"Invalid response body: {e!s}"), attempt
                ) from None
        raise SensorRequestError(f"Request failed after {max_retries} retries with unknown error")
    finally:
        if should_close_client:
            await client.aclose()


def make_request_sync(
    method: str,
    url: str,
    json: Any | None = None,
    headers: dict[str, str] | None = None,
    max_retries: int = 0,
    retry_delay: float = 0.5,
    *,
    retry_status_codes: Collection[int] | None = DEFAULT_RETRY_STATUS_CODES,
    parse_json: bool = True,
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    """
    Make a synchronous HTTP request.

    Same contract as :func:`make_request`, without the backoff cap. Used by
    the identity resolver, which must stay bounded and defaults to a single
    attempt.
    """
    attempt = 0
    should_close_client = False

    if client is None:
        client = create_sync_client()
        should_close_client = True

    try:
        while attempt <= max_retries:
            attempt += 1

            try:
                response = client.request(method=method, url=url, json=json, headers=headers)

                if (
                    _should_retry_status(response.status_code, retry_status_codes)
                    and attempt <= max_retries
                ):
                    retry_time = backoff_delay(attempt, retry_delay)
                    logger.debug(
                        "Received status %d from %s, retrying in %.2f seconds (attempt %d/%d)",
                        response.status_code,
                        url,
                        retry_time,
                        attempt,
                        max_retries,
                    )
                    time.sleep(retry_time)
                    continue

                response.raise_for_status()
                return _decode(response) if parse_json else {}
            except httpx.HTTPStatusError as e:
                raise _with_attempts(SensorRequestError.from_httpx_error(e), attempt) from None
            except httpx.TimeoutException as e:
                raise _with_attempts(
                    SensorTimeoutError(f"Request timed out: {e!s}"), attempt
                ) from None
            except httpx.RequestError as e:
                if attempt <= max_retries:
                    retry_time = backoff_delay(attempt, retry_delay)
                    logger.debug(
                        "Network error %s from %s, retrying in %.2f seconds (attempt %d/%d)",
                        str(e),
                        url,
                        retry_time,
                        attempt,
                        max_retries,
                    )
                    time.sleep(retry_time)
                    continue
                raise _with_attempts(SensorNetworkError(f"Network error: {e!s}"), attempt) from None
            except ValueError as e:
                raise _with_attempts(
                    SensorRequestError(f"Invalid response body: {e!s}"), attempt
                ) from None
        raise SensorRequestError(f"Request failed after {max_retries} retries with unknown error")
    finally:
        if should_close_client:
            client.close()
