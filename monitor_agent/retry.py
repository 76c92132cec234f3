"""Exponential backoff for one-shot (non-streaming) provider calls.

Streaming agent runs are never retried here: a partially forwarded stream
cannot be replayed to the caller. The decomposition planner is the main user.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fallback for errors that carry no HTTP status.
_TRANSIENT_MESSAGES = (
    "timeout",
    "timed out",
    "connection",
    "rate limit",
    "overloaded",
    "temporarily",
    "unavailable",
    "429",
    "502",
    "503",
    "504",
)


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 20.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.2

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1``, with +/- jitter."""
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        return max(0.0, delay + delay * self.jitter_factor * (2 * random.random() - 1))


class TransientError(Exception):
    """Failure that is worth retrying."""


class PermanentError(Exception):
    """Failure that must not be retried."""


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    config: RetryConfig,
    *args: Any,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying transient failures.

    Args:
        func: Coroutine function to call (e.g. ``provider.generate``).
        config: Attempt count and backoff shape.

    Returns:
        The first successful result.

    Raises:
        PermanentError: The failure was not transient (original error chained).
        Exception: The last transient error once attempts are exhausted.
    """
    if config.max_attempts < 1:
        raise PermanentError("max_attempts must be >= 1")

    attempt = 0
    while True:
        try:
            result = await func(*args, **kwargs)
        except (asyncio.CancelledError, PermanentError):
            raise
        except Exception as e:
            if not is_transient_error(e):
                raise PermanentError(str(e)) from e
            attempt += 1
            if attempt >= config.max_attempts:
                logger.error(f"Giving up after {attempt} attempts: {e}")
                raise
            delay = config.delay_for(attempt - 1)
            logger.warning(f"Attempt {attempt}/{config.max_attempts} failed ({e}), retrying in {delay:.2f}s")
            await asyncio.sleep(delay)
            continue

        if attempt:
            logger.info(f"Succeeded after {attempt + 1} attempts")
        return result


def _status_code(error: BaseException) -> Optional[int]:
    # openai.APIStatusError exposes ``status_code``; google.genai APIError exposes ``code``.
    for attr in ("status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and 400 <= value < 600:
            return value
    return None


def is_transient_error(error: BaseException) -> bool:
    """Rate limits, server errors and network failures are transient; other 4xx are not."""
    if isinstance(error, TransientError):
        return True
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    status = _status_code(error)
    if status is not None:
        return status == 429 or status >= 500

    message = str(error).lower()
    return any(pattern in message for pattern in _TRANSIENT_MESSAGES)
