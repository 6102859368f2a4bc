from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .errors import ServiceError
from .logging import get_logger

T = TypeVar("T")

logger = get_logger(component="retry")


class TransientProviderError(Exception):
    """Raised by provider adapters for faults worth retrying (throttling, dropped connections)."""


DEFAULT_RETRY_ON: Tuple[Type[BaseException], ...] = (TransientProviderError, ConnectionError, TimeoutError)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    operation: str,
    attempts: int = 3,
    base_delay_s: float = 0.5,
    retry_on: Optional[Tuple[Type[BaseException], ...]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``fn()`` up to ``attempts`` times with exponential backoff.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    untouched. Once the attempts are used up the last transient failure is
    wrapped in a :class:`ServiceError`.
    """
    exc_types = retry_on or DEFAULT_RETRY_ON
    last_err: Optional[BaseException] = None

    for attempt in range(attempts):
        try:
            return await fn()
        except exc_types as exc:
            last_err = exc
            if attempt + 1 >= attempts:
                break
            delay = base_delay_s * (2**attempt)
            logger.warning(
                "provider_call_retry",
                operation=operation,
                attempt=attempt + 1,
                delay_s=delay,
                error=str(exc),
            )
            await sleep(delay)

    assert last_err is not None
    raise ServiceError(
        f"{operation} failed after {attempts} attempts: {last_err}",
        details={"operation": operation, "attempts": attempts, "cause": str(last_err)},
    ) from last_err


__all__ = ["TransientProviderError", "with_retry", "DEFAULT_RETRY_ON"]
