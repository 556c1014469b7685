"""Transport retry utilities with tenacity."""

import logging
from collections.abc import Callable

import httpx
from tenacity import (
    AsyncRetrying,
    after_log,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ..config import settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class RetryableHTTPError(Exception):
    """Raised for responses worth retrying (rate limits, gateway errors)."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code} from {response.request.url}")
        self.response = response


def is_retryable_error(error: BaseException) -> bool:
    """Transport failures and retryable status codes; never cancellation."""
    return isinstance(error, (httpx.TransportError, RetryableHTTPError))


def raise_for_retryable_status(response: httpx.Response) -> httpx.Response:
    if response.status_code in RETRYABLE_STATUS_CODES:
        raise RetryableHTTPError(response)
    return response


def create_async_retrying(
    max_attempts: int | None = None,
    max_wait: int | None = None,
    base_wait: float = 1.0,
    jitter: bool = True,
    retry_predicate: Callable[[BaseException], bool] = is_retryable_error,
) -> AsyncRetrying:
    """
    Create an async retry controller with exponential backoff.

    Args:
        max_attempts: Maximum attempts including the first (default from settings)
        max_wait: Maximum wait time in seconds (default from settings)
        base_wait: Base wait time for exponential backoff
        jitter: Whether to add random jitter to prevent thundering herd
        retry_predicate: Decides which exceptions are retried

    Returns:
        AsyncRetrying instance; use with ``async for attempt in ...``
    """
    if max_attempts is None:
        max_attempts = settings.http_max_retries + 1

    if max_wait is None:
        max_wait = settings.http_retry_max_wait

    if jitter:
        wait_strategy = wait_exponential(multiplier=base_wait, max=max_wait) + wait_random(0, 1)
    else:
        wait_strategy = wait_exponential(multiplier=base_wait, max=max_wait)

    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_strategy,
        retry=retry_if_exception(retry_predicate),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        after=after_log(logger, logging.DEBUG),
        reraise=True,
    )


async def request_with_retry(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    retrying: AsyncRetrying | None = None,
    **kwargs,
) -> httpx.Response:
    """Send an idempotent request, retrying transport errors and 429/5xx.

    The final response is returned as-is (including retryable statuses once
    attempts are exhausted) so callers can map it to their own errors.
    """
    retrying = retrying or create_async_retrying()
    try:
        async for attempt in retrying:
            with attempt:
                response = await client.request(method, url, **kwargs)
                raise_for_retryable_status(response)
                return response
    except RetryableHTTPError as e:
        return e.response
