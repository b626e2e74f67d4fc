"""
src/retry.py
=============
Bounded async retry utility — PlayCoach

Runs an async attempt function up to ``max_attempts`` times, sleeping
``delay_for(attempt)`` seconds before each attempt (0-indexed) and
calling ``on_retry(attempt)`` before every attempt after the first.

Usage in the orchestrator::

    from src.retry import retry_async

    result = await retry_async(
        run_once,
        max_attempts=3,
        delay_for=settings.retry_delay,
        is_retryable=lambda exc: not isinstance(exc, InvalidAnalysisInputError),
        retry_on=(AnalysisError,),
        on_retry=record_retry,
    )

Exceptions outside ``retry_on`` propagate immediately, as do exceptions
for which ``is_retryable`` returns False.

This module does NOT:
    - Decide what is retryable (the caller does)
    - Log below WARNING for failed attempts
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("playcoach.retry")


async def retry_async(
    attempt_fn: Callable[[int], Awaitable[Any]],
    max_attempts: int,
    delay_for: Callable[[int], float],
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    is_retryable: Callable[[BaseException], bool] = lambda exc: True,
    on_retry: Optional[Callable[[int], Awaitable[Any]]] = None,
    label: str = "operation",
) -> Any:
    """
    Call ``await attempt_fn(attempt)`` with bounded retry.

    Returns:
        The first successful result.

    Raises:
        The last exception if all attempts fail, or the first
        non-retryable exception.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_exc: BaseException | None = None

    for attempt in range(max_attempts):
        delay = delay_for(attempt)
        if attempt > 0:
            logger.info(
                "Retrying %s in %.1fs (attempt %d/%d).",
                label, delay, attempt + 1, max_attempts,
            )
        if delay > 0:
            await asyncio.sleep(delay)
        if attempt > 0 and on_retry is not None:
            await on_retry(attempt)

        try:
            return await attempt_fn(attempt)
        except retry_on as exc:
            last_exc = exc

            if not is_retryable(exc):
                logger.warning("%s failed with non-retryable error: %s", label, exc)
                raise

            if attempt < max_attempts - 1:
                logger.warning(
                    "%s failed (attempt %d/%d): %s",
                    label, attempt + 1, max_attempts, exc,
                )
            else:
                logger.error(
                    "%s failed after %d attempts: %s",
                    label, max_attempts, exc,
                )

    # All attempts exhausted
    raise last_exc  # type: ignore[misc]
