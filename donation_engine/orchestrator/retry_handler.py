"""Retry with exponential backoff and bounded-time calls"""

import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Callable, Any, Tuple, Type
from donation_engine.utils.logging import get_logger
from donation_engine.utils.errors import DonationEngineError

logger = get_logger(__name__)


def retry_with_exponential_backoff(
    func: Callable,
    *args,
    max_retries: int = 5,
    base_delay: float = 30,
    max_delay: float = 480,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    exhausted_error: Type[DonationEngineError] = DonationEngineError,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs
) -> Any:
    """
    Retry function with exponential backoff

    Args:
        func: Function to retry
        *args, **kwargs: Arguments to pass to func
        max_retries: Maximum attempts
        base_delay: Base delay in seconds
        max_delay: Max delay cap in seconds
        retry_on: Exception types that trigger another attempt
        exhausted_error: Raised once every attempt has failed
        sleep: Delay function (injected in tests)

    Returns:
        Function result

    Raises:
        exhausted_error: If all retries exhausted
    """
    for attempt in range(max_retries):
        try:
            return func(*args, **kwargs)

        except retry_on as e:
            if attempt == max_retries - 1:
                logger.error(f"All {max_retries} retry attempts exhausted", error=str(e))
                raise exhausted_error(f"Failed after {max_retries} attempts: {e}") from e

            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(f"Attempt {attempt + 1} failed, retrying in {delay}s: {e}")
            sleep(delay)


def call_with_timeout(
    func: Callable,
    timeout_seconds: float,
    *args,
    timeout_error: Type[DonationEngineError] = DonationEngineError,
    **kwargs
) -> Any:
    """
    Run func on a worker thread and wait at most timeout_seconds.

    Exceptions raised by func propagate unchanged. On timeout the worker is
    abandoned (Python threads cannot be killed) and timeout_error is raised.
    """
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout_seconds)
    except FutureTimeoutError:
        name = getattr(func, '__name__', repr(func))
        logger.error("Call timed out", call=name, timeout_seconds=timeout_seconds)
        raise timeout_error(f"{name} did not finish within {timeout_seconds}s")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
