"""Retry executor on tenacity: exponential backoff, jitter and cooperative cancellation."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from logging import getLogger
from typing import TYPE_CHECKING

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base, wait_exponential

from catalogsync.config.http_resilience import RetryPolicy
from catalogsync.domain.errors import SyncCancelledError, TransientError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tenacity import RetryCallState

log = getLogger(__name__)


class ErrorClass(StrEnum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


type Classifier = Callable[[BaseException], ErrorClass]

_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    TransientError,
    TimeoutError,
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


def classify_error(error: BaseException) -> ErrorClass:
    """Default classification: transient transport trouble is retried, nothing else.

    ``NotFoundError`` and ``UniqueKeyConflictError`` are fatal here on purpose:
    callers turn them into "not found" and "relocate" respectively.
    """

    if isinstance(error, _RETRYABLE_ERRORS):
        return ErrorClass.RETRYABLE
    return ErrorClass.FATAL


async def _default_sleep(delay: float) -> None:
    await asyncio.sleep(delay)


class wait_policy(wait_base):  # noqa: N801
    """``wait_exponential`` plus jitter proportional to the delay, stretched by Retry-After."""

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        multiplier: float,
        jitter_source: Callable[[float, float], float],
    ) -> None:
        self.policy = policy
        self.jitter_source = jitter_source
        self._exponential = wait_exponential(multiplier=multiplier, max=policy.max_backoff_wait)

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self._exponential(retry_state)
        if self.policy.backoff_jitter > 0 and delay > 0:
            delay += self.jitter_source(0.0, self.policy.backoff_jitter * delay)
        delay = min(delay, self.policy.max_backoff_wait)

        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None and outcome.failed else None
        if (
            self.policy.respect_retry_after_header
            and isinstance(error, TransientError)
            and error.retry_after
        ):
            delay = min(max(delay, error.retry_after), self.policy.max_backoff_wait)
        return delay


@dataclass(slots=True)
class RetryExecutor:
    """Runs an async operation until it succeeds, fails fatally or runs out of attempts.

    The executor keeps no state between calls. ``cancel_event`` is shared with the
    run: once set, no new attempt starts and any backoff sleep is cut short with
    ``SyncCancelledError``. Exhaustion re-raises the last error unchanged.
    """

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    cancel_event: asyncio.Event | None = None
    sleep: Callable[[float], Awaitable[None]] = _default_sleep
    jitter_source: Callable[[float, float], float] = random.uniform

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def execute[T](
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        classify: Classifier = classify_error,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        description: str = "operation",
    ) -> T:
        attempts = self.policy.total if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        def retryable(error: BaseException) -> bool:
            if isinstance(error, SyncCancelledError):
                return False
            return classify(error) is ErrorClass.RETRYABLE

        def log_retry(retry_state: RetryCallState) -> None:
            log.info(
                "Retrying %s in %.2fs (attempt %s/%s failed: %s)",
                description,
                retry_state.upcoming_sleep,
                retry_state.attempt_number,
                attempts,
                _failure(retry_state),
            )

        def log_give_up(retry_state: RetryCallState) -> None:
            if retry_state.attempt_number >= attempts:
                log.warning(
                    "Giving up on %s after %s attempts: %s",
                    description,
                    retry_state.attempt_number,
                    _failure(retry_state),
                )

        retrying = AsyncRetrying(
            retry=retry_if_exception(retryable),
            stop=stop_after_attempt(attempts),
            wait=wait_policy(
                self.policy,
                multiplier=self.policy.backoff_factor if base_delay is None else base_delay,
                jitter_source=self.jitter_source,
            ),
            sleep=partial(self._wait, description=description),
            before_sleep=log_retry,
            after=log_give_up,
            reraise=True,
        )
        return await retrying(self._attempt, operation, description)

    async def _attempt[T](self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        if self.cancelled:
            raise SyncCancelledError(f"Cancelled before attempting {description}")
        timeout = self.policy.attempt_timeout_seconds
        if timeout is None:
            return await operation()
        async with asyncio.timeout(timeout):
            return await operation()

    async def _wait(self, delay: float, *, description: str) -> None:
        if self.cancel_event is None:
            await self.sleep(delay)
            return

        sleeper = asyncio.ensure_future(self.sleep(delay))
        watcher = asyncio.ensure_future(self.cancel_event.wait())
        try:
            done, _ = await asyncio.wait({sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, watcher):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, watcher, return_exceptions=True)
        if watcher in done:
            raise SyncCancelledError(f"Cancelled while waiting to retry {description}")


def _failure(retry_state: RetryCallState) -> BaseException | None:
    outcome = retry_state.outcome
    return outcome.exception() if outcome is not None and outcome.failed else None
