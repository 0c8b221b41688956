"""Utility functions for Mail Archive Sync."""

import asyncio
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

Sleep = Callable[[float], Awaitable[Any]]


def retry_on_failure(
    max_retries: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    no_retry: tuple[type[BaseException], ...] = (),
    sleep: Sleep = asyncio.sleep,
) -> Callable[[F], F]:
    """Decorator to retry a coroutine function on failure with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts. 0 calls the function once.
        delay: Initial delay between retries in seconds.
        backoff: Multiplier for delay after each retry.
        no_retry: Exception types that are re-raised immediately.
        sleep: Awaitable sleep used between attempts.

    Returns:
        Decorated coroutine function with retry logic.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            current_delay = delay
            last_exception: Exception | None = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except no_retry:
                    raise
                except Exception as e:
                    last_exception = e
                    if attempt < max_retries:
                        logger.warning(
                            "function_retry",
                            function=func.__name__,
                            attempt=attempt + 1,
                            max_retries=max_retries,
                            delay=current_delay,
                            error=str(e),
                        )
                        await sleep(current_delay)
                        current_delay *= backoff
                    elif max_retries > 0:
                        logger.error(
                            "function_retry_exhausted",
                            function=func.__name__,
                            attempts=max_retries + 1,
                            error=str(e),
                        )

            raise last_exception  # type: ignore

        return wrapper  # type: ignore

    return decorator
