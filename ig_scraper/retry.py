from __future__ import annotations

import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """
    Exponential backoff shared by page requests and dataset pushes.

    - max_attempts includes the first try (max_attempts=3 => 1 try + 2 retries).
    - the n-th failure waits base_delay_seconds * 2**(n-1), capped at max_delay_seconds.
    - a server Retry-After hint can only lengthen the wait, up to retry_after_cap_seconds
      (0 disables the cap).
    - jitter_ratio spreads the final delay over [1-jitter, 1+jitter].
    """

    max_attempts: int = 6
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 20.0
    jitter_ratio: float = 0.25
    retry_after_cap_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        if not (0.0 <= self.jitter_ratio <= 1.0):
            raise ValueError("jitter_ratio must be between 0 and 1")
        if self.retry_after_cap_seconds < 0:
            raise ValueError("retry_after_cap_seconds must be >= 0")

    @classmethod
    def for_request_retries(cls, max_request_retries: int) -> "RetryConfig":
        """Policy for a crawl configured with `max_request_retries` retries per request."""
        return cls(max_attempts=max(0, int(max_request_retries)) + 1)

    def capped_retry_after(self, seconds: float | None) -> float | None:
        if seconds is None or seconds < 0:
            return None
        if self.retry_after_cap_seconds > 0:
            return min(float(seconds), float(self.retry_after_cap_seconds))
        return float(seconds)

    def delay_for(self, failure_attempt: int, retry_after: float | None = None) -> float:
        delay = self.base_delay_seconds * (2 ** max(0, int(failure_attempt) - 1))
        delay = min(self.max_delay_seconds, max(0.0, float(delay)))

        hint = self.capped_retry_after(retry_after)
        if hint is not None:
            delay = max(delay, hint)

        if delay > 0 and self.jitter_ratio > 0:
            delay *= random.uniform(1.0 - self.jitter_ratio, 1.0 + self.jitter_ratio)
        return max(0.0, delay)


def parse_retry_after(value: str | None) -> float | None:
    """
    Seconds to wait from a Retry-After header: either delta-seconds or an HTTP date.
    """
    text = (value or "").strip()
    if not text:
        return None
    try:
        return max(0.0, float(text))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


@dataclass(frozen=True)
class RetryEvent:
    operation: str
    failure_attempt: int
    next_attempt: int
    max_attempts: int

    delay_seconds: float
    retry_after_seconds: float | None
    reason: str | None

    error_type: str
    error_message: str

    context_url: str | None

    def log_data(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "attempt": self.failure_attempt,
            "max_attempts": self.max_attempts,
            "delay_seconds": round(self.delay_seconds, 3),
            "reason": self.reason,
            "error_type": self.error_type,
        }


IsRetryableFn = Callable[[BaseException], tuple[bool, float | None, str | None]]
OnRetryFn = Callable[[RetryEvent], None]
SleepFn = Callable[[float], None]


def call_with_retries(
    fn: Callable[[], T],
    *,
    cfg: RetryConfig,
    is_retryable: IsRetryableFn,
    operation: str,
    on_retry: OnRetryFn | None = None,
    sleep_fn: SleepFn | None = None,
    context_url: str | None = None,
) -> T:
    """
    Run fn(), retrying the failures `is_retryable` accepts until attempts run out.

    `is_retryable` returns (retry?, retry_after_seconds, reason). The last
    exception is re-raised unchanged.
    """
    op = (operation or "").strip() or "operation"
    sleep = sleep_fn or time.sleep
    attempts = int(cfg.max_attempts)
    attempt = 0

    while True:
        attempt += 1
        try:
            return fn()
        except Exception as exc:
            retryable, retry_after, reason = is_retryable(exc)
            if not retryable or attempt >= attempts:
                raise

            delay = cfg.delay_for(attempt, retry_after)
            if on_retry is not None:
                on_retry(
                    RetryEvent(
                        operation=op,
                        failure_attempt=attempt,
                        next_attempt=attempt + 1,
                        max_attempts=attempts,
                        delay_seconds=delay,
                        retry_after_seconds=cfg.capped_retry_after(retry_after),
                        reason=reason,
                        error_type=type(exc).__name__,
                        error_message=(str(exc) or "").strip(),
                        context_url=context_url,
                    )
                )
            if delay > 0:
                sleep(delay)
