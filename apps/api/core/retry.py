"""
Bounded exponential backoff for store interactions.

Only failures classified as transient are retried. Definitive outcomes
(not found, validation, auth) propagate on the first attempt.
"""
import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from core.exceptions import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient_store_error(exc: BaseException) -> bool:
    """Connection drops, timeouts, pool exhaustion."""
    if isinstance(exc, (OperationalError, InterfaceError, PoolTimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, DBAPIError) and getattr(exc, "connection_invalidated", False):
        return True
    return False


def backoff_delay(attempt: int, base_delay_s: float, max_delay_s: float) -> float:
    """Delay before retry number `attempt` (0-based): base * 2^attempt, capped."""
    return min(base_delay_s * (2 ** attempt), max_delay_s)


def retry_with_backoff(
    operation: Callable[[], T],
    attempts: int = 3,
    base_delay_s: float = 0.2,
    max_delay_s: float = 2.0,
    should_retry: Callable[[BaseException], bool] = is_transient_store_error,
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
    description: str = "store operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run `operation` up to `attempts` times.

    Non-retryable exceptions propagate unchanged. When the last attempt fails
    with a retryable exception, TransientStoreError is raised from it.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(attempts):
        try:
            return operation()
        except Exception as e:
            if not should_retry(e):
                raise
            last_error = e
            if attempt == attempts - 1:
                break
            delay = backoff_delay(attempt, base_delay_s, max_delay_s)
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{attempts}), retrying in {delay:.2f}s: {e}",
                extra={"extra_fields": {"attempt": attempt + 1, "max_attempts": attempts}},
            )
            if on_retry is not None:
                on_retry(e, attempt)
            sleep(delay)

    logger.error(f"{description} failed after {attempts} attempts: {last_error}")
    raise TransientStoreError(f"{description} failed after {attempts} attempts") from last_error


