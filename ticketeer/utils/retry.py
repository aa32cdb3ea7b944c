"""
Exponential backoff for calls that can fail transiently: database writes made
outside a request (the sweeper) and calls to external services (S3).
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Tuple, Type

from sqlalchemy.exc import OperationalError

from .exceptions import DependencyError

logger = logging.getLogger(__name__)

ExceptionTypes = Tuple[Type[BaseException], ...]


@dataclass
class RetryConfig:
    """How many times to try and how long to wait in between."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt."""
        delay = min(self.base_delay * self.exponential_base ** attempt, self.max_delay)
        if self.jitter:
            delay *= 0.5 + random.random() / 2
        return delay


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    config: RetryConfig,
    *args,
    retryable_exceptions: ExceptionTypes = (Exception,),
    non_retryable_exceptions: ExceptionTypes = (),
    **kwargs
) -> Any:
    """
    Await ``func(*args, **kwargs)``, retrying on ``retryable_exceptions``.

    Exceptions in ``non_retryable_exceptions`` and the failure of the last
    attempt propagate unchanged.
    """
    name = getattr(func, "__qualname__", repr(func))
    last_attempt = config.max_attempts - 1

    for attempt in range(config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except non_retryable_exceptions:
            raise
        except retryable_exceptions as e:
            if attempt == last_attempt:
                logger.error("%s failed after %d attempts: %s", name, config.max_attempts, e)
                raise
            delay = config.delay_for(attempt)
            logger.warning("%s failed (attempt %d/%d), retrying in %.2fs: %s",
                           name, attempt + 1, config.max_attempts, delay, e)
            await asyncio.sleep(delay)


def retry_on_store_error(max_attempts: int = 3, base_delay: float = 0.2, max_delay: float = 2.0):
    """Retry a database write on connection-level failures."""
    config = RetryConfig(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay)

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await retry_async(
                func,
                config,
                *args,
                retryable_exceptions=(OperationalError, asyncio.TimeoutError, ConnectionError),
                non_retryable_exceptions=(ValueError, TypeError),
                **kwargs
            )
        return wrapper

    return decorator


def retry_on_dependency_error(
    retryable_exceptions: ExceptionTypes,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    service_name: str = "dependency"
):
    """Retry a call to an external service.

    When the retries run out the failure surfaces as ``DependencyError`` so the
    API answers 503 with Retry-After.
    """
    config = RetryConfig(max_attempts=max_attempts, base_delay=base_delay, max_delay=max_delay)

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await retry_async(func, config, *args, retryable_exceptions=retryable_exceptions, **kwargs)
            except retryable_exceptions as e:
                raise DependencyError(service_name, str(e)) from e
        return wrapper

    return decorator
