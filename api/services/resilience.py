"""
Resilience utilities for lidmap.

Provides:
- Retry with exponential backoff for calls to the WhatsApp bridge
- Classification of retryable HTTP statuses
"""
import asyncio
import functools
import logging
from typing import Callable, TypeVar, Optional, Any
from dataclasses import dataclass

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    retryable_exceptions: tuple = (Exception,)


DEFAULT_RETRY_CONFIG = RetryConfig()


class ServiceUnavailableError(Exception):
    """Raised when an external collaborator (the bridge) is unavailable."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.message = message
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


def retry_async(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception], Any]] = None,
):
    """
    Decorator for async functions with retry logic.

    Args:
        config: Retry configuration
        on_retry: Optional callback on each retry (retry_num, exception)
    """
    cfg = config or DEFAULT_RETRY_CONFIG

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            last_exception = None

            for attempt in range(cfg.max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except cfg.retryable_exceptions as e:
                    last_exception = e
                    if attempt >= cfg.max_retries:
                        logger.error(
                            f"All {cfg.max_retries} retries exhausted for {func.__name__}: {e}"
                        )
                        break

                    delay = min(
                        cfg.base_delay * (cfg.exponential_base ** attempt),
                        cfg.max_delay
                    )
                    logger.warning(
                        f"Retry {attempt + 1}/{cfg.max_retries} for {func.__name__}: {e}. "
                        f"Waiting {delay:.1f}s..."
                    )
                    if on_retry:
                        on_retry(attempt + 1, e)
                    await asyncio.sleep(delay)

            raise last_exception

        return wrapper
    return decorator


def is_retryable_status(status_code: int) -> bool:
    """
    Check if HTTP status code is retryable.

    Args:
        status_code: HTTP status code

    Returns:
        True if the error is transient and retryable
    """
    # 5xx server errors (except 501 Not Implemented)
    if status_code >= 500 and status_code != 501:
        return True

    # 429 Too Many Requests
    if status_code == 429:
        return True

    # 408 Request Timeout
    return status_code == 408


class RetryableBridgeError(ServiceUnavailableError):
    """Transient bridge failure (connection drop, 5xx, 429)."""


BRIDGE_API_RETRY = RetryConfig(
    max_retries=2,
    base_delay=0.5,
    max_delay=5.0,
    retryable_exceptions=(
        ConnectionError,
        TimeoutError,
        RetryableBridgeError,
    ),
)
