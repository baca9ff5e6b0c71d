"""Retry helper for callers of the tracker. The GitHub source itself never retries."""
import time
from functools import wraps
from typing import Any, Callable, Tuple, Type

from common.logging import LoggingManager
from releasetracker.exceptions import UpstreamUnavailable

logger = LoggingManager.get_logger('app.retry')


def retry_on_failure(max_retries: int = 3, delay: float = 1.0, backoff: float = 2.0,
                     exceptions: Tuple[Type[BaseException], ...] = (UpstreamUnavailable,)):
    """Decorator to retry a function when it raises one of ``exceptions``.

    Args:
        max_retries: Retries after the first attempt. 0 calls the function once.
        delay: Initial delay between attempts in seconds.
        backoff: Multiplier for the delay after each retry.
        exceptions: Exception types worth another attempt. Anything else propagates at once.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            current_delay = delay
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        if max_retries:
                            logger.error(f"All {max_retries + 1} attempts of {func.__name__} failed. Last error: {e}")
                        raise
                    logger.warning(f"Attempt {attempt + 1}/{max_retries + 1} of {func.__name__} failed: {e}")
                    logger.info(f"Retrying in {current_delay:.2f} seconds...")
                    time.sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator
