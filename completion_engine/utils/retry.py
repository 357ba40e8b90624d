"""
Retry-with-backoff combinator shared by crediting and referral matching.

Thin wrapper over tenacity so every call site states the same four things:
operation, max attempts, base delay, retryable predicate.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from completion_engine.core.exceptions import CompletionEngineError

T = TypeVar("T")


def is_retryable_error(error: BaseException) -> bool:
    """
    Default predicate: store errors and unexpected errors are retried,
    engine errors that describe a permanent precondition are not
    """
    if isinstance(error, CompletionEngineError):
        return error.retryable
    return isinstance(error, Exception)


def _log_before_sleep(operation_name: str, context: dict[str, Any]) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.bind(
            operation=operation_name,
            attempt=retry_state.attempt_number,
            error_type=type(error).__name__,
            delay_seconds=delay,
            **context,
        ).warning(f"{operation_name} failed (attempt {retry_state.attempt_number}), retrying in {delay:.3f}s: {error}")

    return _before_sleep


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    base_delay: float,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    operation_name: str = "operation",
    context: Optional[dict[str, Any]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run operation, retrying with exponential backoff

    Delay before retry n is base_delay * 2 ** (n - 1). Errors rejected by
    is_retryable propagate immediately; once max_attempts is exhausted the
    last error is logged with its attempt count and re-raised.

    Args:
        operation: Zero-argument coroutine function
        max_attempts: Total attempts including the first
        base_delay: Delay in seconds before the first retry
        is_retryable: Predicate deciding whether an error is worth retrying
        operation_name: Used in log records
        context: Extra ids bound to every log record
        sleep: Sleep coroutine (overridable in tests)

    Returns:
        Result of the first successful attempt
    """
    context = context or {}
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(max_attempts, 1)),
        wait=wait_exponential(multiplier=base_delay, min=0),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_before_sleep(operation_name, context),
        reraise=True,
        sleep=sleep,
    )

    try:
        return await retrying(operation)
    except Exception as error:
        attempts = retrying.statistics.get("attempt_number", 1)
        if is_retryable(error):
            logger.bind(
                operation=operation_name,
                attempts=attempts,
                error_type=type(error).__name__,
                **context,
            ).error(f"{operation_name} failed after {attempts} attempts: {error}")
        raise
