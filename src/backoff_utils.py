"""Bounded retry with exponential backoff for exchange writes."""

import asyncio
import contextlib
import os

from config import RETRY_ATTEMPTS, RETRY_BASE_DELAY_SEC
from utils import logger


# Maximum duration allowed for each attempt.
REQUEST_TIMEOUT = float(os.getenv("GRID_REQUEST_TIMEOUT", "10"))


async def call_with_retries(
    op,
    *,
    limiter=None,
    max_attempts=RETRY_ATTEMPTS,
    base_delay=RETRY_BASE_DELAY_SEC,
    timeout=None,
    sleep=asyncio.sleep,
):
    """Run ``op`` up to ``max_attempts`` times.

    ``op`` is a no-arg coroutine function performing one exchange call.  Any
    exception is retried, whatever its type; after attempt ``k`` (0-based)
    the wait is ``base_delay * 2**k``.  When every attempt fails the last
    error is re-raised unchanged.  Cancellation is never retried.

    ``limiter`` (optional) is awaited before each attempt and ``timeout``
    (default ``GRID_REQUEST_TIMEOUT``) bounds each attempt.
    """
    timeout = REQUEST_TIMEOUT if timeout is None else timeout
    attempt = 0
    while True:
        if limiter is not None:
            await limiter.acquire()
        try:
            task = asyncio.ensure_future(op())
            try:
                return await asyncio.wait_for(task, timeout=timeout)
            except asyncio.TimeoutError:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                raise
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: PERF203 - every failure is retried
            if attempt + 1 >= max_attempts:
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(
                "exchange call failed; retrying | attempt=%d/%d delay=%.2fs status=%s error=%s",
                attempt + 1,
                max_attempts,
                delay,
                getattr(e, "status_code", None),
                e,
            )
            attempt += 1
            await sleep(delay)
