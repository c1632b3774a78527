"""Bounded retry with a fixed delay for async operations."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from .errors import is_retryable

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of a retried operation."""

    ok: bool
    value: Optional[T] = None
    attempts: int = 0
    error: Optional[str] = None
    exception: Optional[BaseException] = None


def _always_ok(_: Any) -> bool:
    return True


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class RetryExecutor:
    """Run an async operation up to ``max_attempts`` times, ``delay`` apart.

    Non-retryable exceptions (``errors.is_retryable`` unless the caller
    passes ``retry_on``) are raised after the attempt that produced them.
    Retryable exceptions and results rejected by ``is_success`` are retried;
    once the attempts are spent a failed ``RetryOutcome`` is returned instead
    of raising.

    The executor holds no per-call state and can be shared by concurrent
    pipelines.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        delay: float = 2.0,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.delay = delay
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        name: str,
        is_success: Callable[[T], bool] = _always_ok,
        retry_on: Callable[[BaseException], bool] = is_retryable,
    ) -> RetryOutcome[T]:
        """Execute ``operation`` with retries.

        Parameters
        ----------
        operation : callable
            Zero-argument coroutine function, called once per attempt
        name : str
            Operation name for log entries
        is_success : callable, optional
            Predicate on the returned value; ``False`` counts as a failed attempt
        retry_on : callable, optional
            Predicate on a raised exception; ``False`` re-raises it at once

        Returns
        -------
        RetryOutcome
            First success, or the failure after the last attempt
        """
        attempt_no = 0

        async def attempt() -> T:
            nonlocal attempt_no
            attempt_no += 1
            try:
                value = await operation()
            except Exception as exc:
                LOGGER.warning(
                    "%s attempt %d/%d failed: %s",
                    name,
                    attempt_no,
                    self.max_attempts,
                    _describe(exc),
                )
                raise
            if is_success(value):
                LOGGER.debug("%s attempt %d/%d succeeded", name, attempt_no, self.max_attempts)
            else:
                LOGGER.warning(
                    "%s attempt %d/%d unsuccessful: %r",
                    name,
                    attempt_no,
                    self.max_attempts,
                    value,
                )
            return value

        def exhausted(state: RetryCallState) -> RetryOutcome[T]:
            outcome = state.outcome
            if outcome is not None and outcome.failed:
                exc = outcome.exception()
                error = _describe(exc)
            else:
                exc = None
                error = "unsuccessful result"
            LOGGER.error("%s gave up after %d attempt(s): %s", name, state.attempt_number, error)
            return RetryOutcome(ok=False, attempts=state.attempt_number, error=error, exception=exc)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception(retry_on) | retry_if_result(lambda v: not is_success(v)),
            retry_error_callback=exhausted,
            sleep=self._sleep,
        )
        result = await retrying(attempt)
        if isinstance(result, RetryOutcome):
            return result
        return RetryOutcome(ok=True, value=result, attempts=attempt_no)
