"""Async retry helper for best-effort background writes."""
import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from discovery.logger import logger

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.2,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    operation_name: str = "operation",
) -> T:
    """Retry an async operation with linear backoff; the last error is re-raised."""
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= max_attempts:
                raise
            delay = base_delay * attempt
            logger.warning(
                "Retrying {operation} (attempt {attempt}/{max_attempts}) in {delay}s: {error}",
                operation=operation_name,
                attempt=attempt,
                max_attempts=max_attempts,
                delay=delay,
                error=exc,
            )
            await asyncio.sleep(delay)
            attempt += 1
