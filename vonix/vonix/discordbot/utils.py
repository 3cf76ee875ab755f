import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp
import discord

T = TypeVar("T")

_logger = logging.getLogger(__name__)


def is_retryable(exc: BaseException) -> bool:
    """Server side failures (5xx) and dropped connections are worth retrying."""
    status = getattr(exc, "status", None)
    if status is not None:
        return 500 <= int(status) < 600
    return isinstance(exc, (aiohttp.ClientError, discord.HTTPException))


async def api_call_with_retries(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    retries: int = 3,
    base_delay: float = 0.5,
    log: Optional[logging.Logger] = None,
    **kwargs: Any,
) -> T:
    """Await ``func`` up to ``retries`` times, doubling the delay each time.

    Anything :func:`is_retryable` rejects is raised on the first failure.
    """

    logger = log or _logger
    for attempt in range(1, retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as exc:
            status = getattr(exc, "status", None)
            if attempt >= retries or not is_retryable(exc):
                logger.error(
                    "api.call failed attempt=%s status=%s error=%s", attempt, status, exc
                )
                raise
            delay = base_delay * 2 ** (attempt - 1)
            logger.warning(
                "api.call retry attempt=%s status=%s delay=%.2fs error=%s",
                attempt,
                status,
                delay,
                exc,
            )
            await asyncio.sleep(delay)
    raise ValueError("retries must be at least 1")
