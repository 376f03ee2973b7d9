"""
KLEOS - Bounded retries for outbound HTTP calls.

Transport errors, timeouts, 429 and 5xx responses are retried with exponential
backoff; any other response is handed back to the caller to interpret.
"""

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from kleos.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = {429}
RETRY_STATUS_CODES.update(range(500, 600))

MAX_BACKOFF_SECONDS = 30.0


async def sleep_backoff(attempt: int, backoff_seconds: float) -> None:
    delay = min(MAX_BACKOFF_SECONDS, backoff_seconds * (2 ** (attempt - 1)))
    await asyncio.sleep(delay)


async def send_with_retries(
    send: Callable[[], Awaitable[httpx.Response]],
    *,
    label: str,
    max_retries: int,
    backoff_seconds: float,
) -> httpx.Response:
    """
    Call send() until it yields a non-transient response or attempts run out.

    Args:
        send: Zero-argument coroutine factory performing one request
        label: Name used in log lines
        max_retries: Retries after the first attempt
        backoff_seconds: Base delay, doubled per attempt

    Returns:
        The last response received (callers check its status)

    Raises:
        UpstreamUnavailable: If every attempt failed at the transport level
    """
    attempt = 0
    max_attempts = max(0, max_retries) + 1

    while True:
        attempt += 1

        try:
            response = await send()
        except httpx.HTTPError as exc:
            logger.warning(f"{label} request failed (attempt {attempt}/{max_attempts}): {exc}")
            if attempt >= max_attempts:
                logger.error(f"{label} exhausted all {max_attempts} attempts")
                raise UpstreamUnavailable(f"Failed to reach {label}: {exc}") from exc
            await sleep_backoff(attempt, backoff_seconds)
            continue

        if response.status_code in RETRY_STATUS_CODES and attempt < max_attempts:
            logger.warning(
                f"{label} transient error (status={response.status_code}, "
                f"attempt {attempt}/{max_attempts}), retrying..."
            )
            await sleep_backoff(attempt, backoff_seconds)
            continue

        if attempt > 1 and response.status_code == 200:
            logger.info(f"{label} request succeeded on attempt {attempt}/{max_attempts}")
        return response
