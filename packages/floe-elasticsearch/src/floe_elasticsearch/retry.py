"""Bounded retry policies with tenacity.

This module provides:
- Retry decorator factory using tenacity
- Capped exponential backoff
- An attempt cap combined with a total wall-clock cap
"""

from __future__ import annotations

import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from floe_elasticsearch.config import RetryPolicy
from floe_elasticsearch.errors import TransientBulkError
from floe_elasticsearch.observability import log_retry_attempt

P = ParamSpec("P")
R = TypeVar("R")

# Default exceptions that trigger retry
DEFAULT_RETRY_EXCEPTIONS: tuple[type[Exception], ...] = (TransientBulkError,)

RetryCallback = Callable[[int, BaseException | None], None]


def create_retry_decorator(
    policy: RetryPolicy,
    *,
    retry_exceptions: tuple[type[Exception], ...] | None = None,
    operation_name: str | None = None,
    on_retry: RetryCallback | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Create a retry decorator with the specified policy.

    The wrapped function is attempted at most ``policy.max_attempts`` times
    and retries stop once ``policy.max_retry_seconds`` have elapsed since the
    first attempt. Exceptions outside ``retry_exceptions`` propagate on the
    first occurrence. When retries are exhausted the last exception is
    re-raised unchanged.

    Args:
        policy: RetryPolicy with attempt and time bounds.
        retry_exceptions: Exception types that trigger retry.
            Defaults to TransientBulkError.
        operation_name: Name for logging purposes.
        on_retry: Called with the failed attempt number and its exception
            before each wait.
        sleep: Sleep function used between attempts.

    Returns:
        Decorator function that adds retry behavior.

    Example:
        >>> policy = RetryPolicy(max_attempts=3)
        >>> @create_retry_decorator(policy, operation_name="bulk_submit")
        ... def submit() -> None:
        ...     client.bulk(operations=operations)
    """
    exceptions = retry_exceptions or DEFAULT_RETRY_EXCEPTIONS

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        op_name = operation_name or func.__name__

        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            wait_seconds = retry_state.next_action.sleep if retry_state.next_action else 0.0
            log_retry_attempt(
                operation=op_name,
                attempt=retry_state.attempt_number,
                max_attempts=policy.max_attempts,
                wait_seconds=wait_seconds,
                error=str(exc),
            )
            if on_retry is not None:
                on_retry(retry_state.attempt_number, exc)

        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            retrying = Retrying(
                retry=retry_if_exception_type(exceptions),
                stop=(
                    stop_after_attempt(policy.max_attempts)
                    | stop_after_delay(policy.max_retry_seconds)
                ),
                wait=wait_exponential(
                    multiplier=policy.initial_wait_seconds,
                    max=policy.max_wait_seconds,
                ),
                before_sleep=before_sleep,
                sleep=sleep,
                reraise=True,
            )
            return retrying(func, *args, **kwargs)

        return wrapper

    return decorator
