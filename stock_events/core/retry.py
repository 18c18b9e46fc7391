"""Retry decorator for provider transports, with exponential backoff."""

import time
from functools import wraps
from typing import Any, Callable, Tuple, Type, TypeVar, cast

from stock_events.core.errors import ProviderError, RateLimited
from stock_events.core.logger import logger

F = TypeVar('F', bound=Callable[..., Any])


def is_retryable(exc: BaseException) -> bool:
    """False for quota errors and for provider errors carrying a 4xx status."""
    if isinstance(exc, RateLimited):
        return False
    if isinstance(exc, ProviderError) and exc.status_code is not None:
        return not 400 <= exc.status_code < 500
    return True


def with_retries(
    max_retries: int = 3,
    initial_delay: float = 2,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    max_delay: float = 30,
) -> Callable[[F], F]:
    """
    Retry the wrapped call on ``retry_on`` exceptions, doubling the delay each time.

    :class:`RateLimited` and client-side (4xx) :class:`ProviderError` are
    re-raised at once; the fallback chain handles them.

    Args:
        max_retries (int): Maximum number of retry attempts.
        initial_delay (float): Seconds before the first retry.
        retry_on (tuple): Exception types that trigger a retry.
        max_delay (float): Ceiling for a single wait.

    Returns:
        Callable: The decorated function.
    """
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            delay = initial_delay
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if not is_retryable(e):
                        raise
                    if attempt == max_retries:
                        logger.error(f"'{func.__name__}' failed after {max_retries} retries: {e}")
                        raise

                    logger.warning(
                        f"'{func.__name__}' failed (attempt {attempt + 1}/{max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, max_delay)

            return None  # unreachable
        return cast(F, wrapper)
    return decorator
