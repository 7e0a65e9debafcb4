"""Retry policies with exponential backoff.

Usage::

    strategy = RetryStrategy(RetryConfig(max_attempts=3, initial_delay=0.5))
    result = await strategy.execute(fetch_data)
    if result.success:
        use(result.data)

Backoff for the wait after failed attempt ``n`` (1-based) is
``min(initial_delay * backoff_multiplier ** (n - 1), max_delay)``; with
jitter enabled the delay is scaled by a random factor in ``[0.5, 1.0]``.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Generic, TypeVar

from pydantic import ValidationError

from agent_skill_engine.errors import EngineError, ErrorCode, ErrorRecoverable

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_CODES: frozenset[ErrorCode] = frozenset(
    {ErrorCode.TIMEOUT, ErrorCode.NETWORK_ERROR, ErrorCode.SKILL_TIMEOUT}
)
NON_RETRYABLE_CODES: frozenset[ErrorCode] = frozenset(
    {
        ErrorCode.VALIDATION_ERROR,
        ErrorCode.PERMISSION_DENIED,
        ErrorCode.NOT_FOUND,
        ErrorCode.ALREADY_EXISTS,
    }
)


@dataclass(frozen=True, slots=True)
class RetryConfig:
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True
    # Seconds for the whole retry loop; 0 disables the overall timeout.
    timeout: float = 0.0
    retryable_codes: frozenset[ErrorCode] = RETRYABLE_CODES
    non_retryable_codes: frozenset[ErrorCode] = NON_RETRYABLE_CODES
    should_retry: Callable[[BaseException, int], bool] | None = None
    on_retry: Callable[[BaseException, int, float], None] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialisable view of the numeric policy (callbacks are dropped)."""

        data = asdict(self)
        for key in ("should_retry", "on_retry"):
            data.pop(key)
        data["retryable_codes"] = sorted(c.value for c in self.retryable_codes)
        data["non_retryable_codes"] = sorted(c.value for c in self.non_retryable_codes)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryConfig:
        values = dict(data)
        for key in ("retryable_codes", "non_retryable_codes"):
            if key in values:
                values[key] = frozenset(ErrorCode(c) for c in values[key])
        return cls(**values)


@dataclass(slots=True)
class RetryResult(Generic[T]):
    success: bool
    data: T | None = None
    error: EngineError | None = None
    attempts: int = 0
    total_delay: float = 0.0
    last_error: BaseException | None = None


@dataclass(slots=True)
class _RetryState:
    attempts: int = 0
    total_delay: float = 0.0
    last_error: BaseException | None = None
    context: dict[str, Any] = field(default_factory=dict)


def classify_error(
    error: BaseException,
    *,
    retryable_codes: frozenset[ErrorCode] = RETRYABLE_CODES,
    non_retryable_codes: frozenset[ErrorCode] = NON_RETRYABLE_CODES,
) -> bool:
    """Default retryability of an error kind.

    Timeouts and transient I/O retry; validation, permission and not-found
    failures do not. Unknown errors are assumed transient.
    """

    if isinstance(error, EngineError):
        if error.recoverable == ErrorRecoverable.NO:
            return False
        if error.code in retryable_codes:
            return True
        if error.code in non_retryable_codes:
            return False
        return error.recoverable == ErrorRecoverable.YES
    if isinstance(error, (PermissionError, FileNotFoundError, ValidationError)):
        return False
    if isinstance(error, (TimeoutError, ConnectionError)):
        return True
    return True


def _code_for(error: BaseException) -> ErrorCode:
    if isinstance(error, TimeoutError):
        return ErrorCode.TIMEOUT
    if isinstance(error, ConnectionError):
        return ErrorCode.NETWORK_ERROR
    if isinstance(error, PermissionError):
        return ErrorCode.PERMISSION_DENIED
    if isinstance(error, FileNotFoundError):
        return ErrorCode.NOT_FOUND
    if isinstance(error, ValidationError):
        return ErrorCode.VALIDATION_ERROR
    return ErrorCode.UNKNOWN


def _as_engine_error(error: BaseException, context: dict[str, Any]) -> EngineError:
    if isinstance(error, EngineError):
        return error
    message = str(error) or type(error).__name__
    wrapped = EngineError(message, code=_code_for(error), context=context)
    wrapped.__cause__ = error
    return wrapped


class RetryStrategy:
    def __init__(
        self,
        config: RetryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.config = config or RetryConfig()
        self._sleep = sleep
        self._rng = rng

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: dict[str, Any] | None = None,
    ) -> RetryResult[T]:
        state = _RetryState(context=dict(context or {}))

        if self.config.timeout <= 0:
            return await self._run(operation, state)

        try:
            return await asyncio.wait_for(self._run(operation, state), self.config.timeout)
        except TimeoutError:
            logger.error(
                f"Retry loop timed out after {self.config.timeout}s",
                extra={"attempts": state.attempts, "retry_context": state.context},
            )
            return RetryResult(
                success=False,
                error=EngineError(
                    f"Operation timed out after {self.config.timeout}s",
                    code=ErrorCode.TIMEOUT,
                    recoverable=ErrorRecoverable.YES,
                    context=state.context,
                ),
                attempts=state.attempts,
                total_delay=state.total_delay,
                last_error=state.last_error,
            )

    async def _run(
        self, operation: Callable[[], Awaitable[T]], state: _RetryState
    ) -> RetryResult[T]:
        while True:
            state.attempts += 1
            try:
                data = await operation()
            except Exception as e:
                state.last_error = e
                exhausted = state.attempts >= self.config.max_attempts
                if exhausted or not self.is_retryable(e, state.attempts):
                    logger.error(
                        f"Retry failed: {e}",
                        extra={"attempts": state.attempts, "retry_context": state.context},
                    )
                    return RetryResult(
                        success=False,
                        error=_as_engine_error(e, state.context),
                        attempts=state.attempts,
                        total_delay=state.total_delay,
                        last_error=e,
                    )

                delay = self.calculate_delay(state.attempts)
                state.total_delay += delay
                logger.warning(
                    f"Attempt {state.attempts}/{self.config.max_attempts} failed: {e}; "
                    f"retrying in {delay:.2f}s",
                    extra={"retry_context": state.context},
                )
                if self.config.on_retry is not None:
                    self.config.on_retry(e, state.attempts, delay)
                await self._sleep(delay)
                continue

            if state.attempts > 1:
                logger.info(
                    "Retry succeeded",
                    extra={"attempts": state.attempts, "total_delay": state.total_delay},
                )
            return RetryResult(
                success=True,
                data=data,
                attempts=state.attempts,
                total_delay=state.total_delay,
            )

    def is_retryable(self, error: BaseException, attempt: int) -> bool:
        if self.config.should_retry is not None and not self.config.should_retry(error, attempt):
            return False
        return classify_error(
            error,
            retryable_codes=self.config.retryable_codes,
            non_retryable_codes=self.config.non_retryable_codes,
        )

    def calculate_delay(self, attempt: int) -> float:
        delay = min(
            self.config.initial_delay * self.config.backoff_multiplier ** (attempt - 1),
            self.config.max_delay,
        )
        if self.config.jitter:
            delay *= 0.5 + self._rng() * 0.5
        return delay


async def retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    context: dict[str, Any] | None = None,
) -> T:
    """Run ``operation`` under a retry strategy and return its value or raise."""

    result = await RetryStrategy(config).execute(operation, context)
    if not result.success:
        assert result.error is not None
        raise result.error
    return result.data  # type: ignore[return-value]


def with_retry(
    config: RetryConfig | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of :func:`retry` for coroutine functions."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry(lambda: func(*args, **kwargs), config, {"operation": func.__name__})

        return wrapper

    return decorator


def create_retry_strategy(config: RetryConfig | None = None, **overrides: Any) -> RetryStrategy:
    base = config or RetryConfig()
    return RetryStrategy(replace(base, **overrides) if overrides else base)


RETRY_PRESETS: dict[str, RetryConfig] = {
    # unstable networks
    "fast": RetryConfig(max_attempts=3, initial_delay=0.5, max_delay=5.0, backoff_multiplier=2.0),
    # slow operations
    "slow": RetryConfig(max_attempts=5, initial_delay=2.0, max_delay=60.0, backoff_multiplier=2.0),
    # critical operations
    "conservative": RetryConfig(
        max_attempts=3, initial_delay=1.0, max_delay=10.0, backoff_multiplier=1.5, jitter=True
    ),
    "once": RetryConfig(max_attempts=2, initial_delay=0.5, max_delay=1.0, backoff_multiplier=1.0),
}
