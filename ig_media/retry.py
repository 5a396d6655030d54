from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """
    Exponential backoff for transient transport errors.

    max_attempts includes the first call; max_attempts=1 disables retries.
    """

    max_attempts: int = 1
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 8.0
    jitter_ratio: float = 0.25

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("delays must be >= 0")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        if not (0.0 <= self.jitter_ratio <= 1.0):
            raise ValueError("jitter_ratio must be between 0 and 1")

    def delay_for(self, failure_attempt: int) -> float:
        delay = self.base_delay_seconds * (2 ** max(0, failure_attempt - 1))
        delay = min(self.max_delay_seconds, max(0.0, delay))
        if delay and self.jitter_ratio > 0:
            delay *= random.uniform(1.0 - self.jitter_ratio, 1.0 + self.jitter_ratio)
        return max(0.0, delay)


@dataclass(frozen=True)
class RetryEvent:
    operation: str
    failure_attempt: int
    max_attempts: int
    delay_seconds: float
    reason: str
    error_type: str
    error_message: str


IsRetryableFn = Callable[[BaseException], str | None]
OnRetryFn = Callable[[RetryEvent], None]
SleepFn = Callable[[float], None]


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "status", "http_status"):
        val = getattr(exc, attr, None)
        if isinstance(val, int) and not isinstance(val, bool):
            return val
    return None


def transient_reason(exc: BaseException) -> str | None:
    """
    Return a short reason when exc looks transient (connection/timeout, 429, 5xx).

    Matches on type and module names so the HTTP stacks stay optional here.
    """
    code = _status_code(exc)
    if code is not None:
        if code == 429 or code >= 500:
            return f"http_{code}"
        return None

    if isinstance(exc, (ConnectionError, TimeoutError)):
        return "network_error"

    name = type(exc).__name__.casefold()
    module = type(exc).__module__.casefold()
    for marker in ("timeout", "connect"):
        if marker in name or marker in module:
            return "network_error"
    return None


def call_with_retries(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig,
    operation: str,
    is_retryable: IsRetryableFn = transient_reason,
    on_retry: OnRetryFn | None = None,
    sleep_fn: SleepFn | None = None,
) -> T:
    sleeper = sleep_fn or time.sleep
    attempts = int(cfg.max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as exc:
            reason = is_retryable(exc)
            if reason is None or attempt >= attempts:
                raise

            delay = cfg.delay_for(attempt)
            if on_retry is not None:
                on_retry(
                    RetryEvent(
                        operation=operation,
                        failure_attempt=attempt,
                        max_attempts=attempts,
                        delay_seconds=delay,
                        reason=reason,
                        error_type=type(exc).__name__,
                        error_message=(str(exc) or "").strip(),
                    )
                )
            if delay > 0:
                sleeper(delay)

    raise RuntimeError(f"Retry loop exited unexpectedly for operation={operation}")
