"""Settle-then-poll helpers for eventually consistent Graph mutations.

Teams tag creation and deletion are processed asynchronously by the
service, so reads issued right after the call may not reflect it yet.
Rather than sleeping a fixed amount and hoping, callers wait an initial
settle delay and then poll a condition with exponential backoff until it
holds or the timeout runs out.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from tenacity import (
    AsyncRetrying,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

logger = logging.getLogger(__name__)

MAX_POLL_ATTEMPTS = 20
MIN_POLL_INTERVAL_SECONDS = 0.5
MAX_POLL_INTERVAL_SECONDS = 10.0


def _is_false(value: bool) -> bool:
    return not value


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


async def wait_until(
    condition: Callable[[], Awaitable[bool]],
    *,
    description: str,
    initial_delay: float,
    timeout: float,
    max_attempts: int = MAX_POLL_ATTEMPTS,
) -> bool:
    """Wait for an asynchronous external change to become visible.

    Args:
        condition: Coroutine function returning True once the change is visible
        description: What is being waited for (used in log messages)
        initial_delay: Seconds to wait before the first check
        timeout: Upper bound in seconds for polling after the initial delay
        max_attempts: Upper bound on the number of checks

    Returns:
        True if the condition held within the limits, False otherwise
    """
    if initial_delay > 0:
        logger.debug(f"Waiting {initial_delay}s for {description}")
        await _sleep(initial_delay)

    def _log_poll(retry_state) -> None:
        logger.debug(f"Still waiting for {description} (check {retry_state.attempt_number})")

    def _give_up(retry_state) -> bool:
        logger.warning(
            f"Gave up waiting for {description} after {retry_state.attempt_number} checks"
        )
        return False

    retrying = AsyncRetrying(
        retry=retry_if_result(_is_false),
        stop=stop_after_delay(timeout) | stop_after_attempt(max_attempts),
        # A zero settle delay still spaces the checks out
        wait=wait_exponential(
            multiplier=initial_delay,
            min=MIN_POLL_INTERVAL_SECONDS,
            max=MAX_POLL_INTERVAL_SECONDS,
        ),
        sleep=_sleep,
        before_sleep=_log_poll,
        retry_error_callback=_give_up,
    )
    return await retrying(condition)
