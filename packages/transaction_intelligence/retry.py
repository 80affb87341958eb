"""Retry policy for calls to external capabilities.

Every remote call in the package goes through :func:`call_with_retry` with an
explicit :class:`RetryPolicy`, so the attempt budget, backoff schedule and
per-call timeout are configuration rather than loop constants scattered
through adapters.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from .errors import CapabilityError
from .logging_setup import get_logger

T = TypeVar("T")

_logger = get_logger("transaction_intelligence.retry")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and pacing for one external call.

    Attributes
    ----------
    max_attempts:
        Total calls allowed, including the first one.
    backoff_schedule:
        Base sleep in seconds before attempt ``n + 1``; the last entry repeats
        when there are more retries than entries.
    jitter_pct:
        Symmetric jitter applied to each sleep, as a fraction of the base.
    timeout_s:
        Per-call timeout handed to the operation.
    """

    max_attempts: int = 3
    backoff_schedule: tuple[float, ...] = (0.5, 2.0)
    jitter_pct: float = 0.20
    timeout_s: float = 10.0

    def __post_init__(self) -> None:
        if isinstance(self.max_attempts, bool) or self.max_attempts < 1:
            raise ValueError("max_attempts must be a positive integer")
        if not self.backoff_schedule:
            raise ValueError("backoff_schedule must not be empty")
        if any(s < 0 for s in self.backoff_schedule):
            raise ValueError("backoff_schedule entries must be non-negative")
        if not 0.0 <= self.jitter_pct < 1.0:
            raise ValueError("jitter_pct must be within [0,1)")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")

    def delay_for(self, attempt_no: int) -> float:
        """Return the sleep before retrying after failed attempt ``attempt_no``."""

        idx = min(attempt_no - 1, len(self.backoff_schedule) - 1)
        base = self.backoff_schedule[idx]
        jitter = base * self.jitter_pct
        return max(0.0, base + random.uniform(-jitter, jitter))


NO_RETRY = RetryPolicy(max_attempts=1, backoff_schedule=(0.0,), jitter_pct=0.0)


def is_retryable(exc: BaseException) -> bool:
    """Return True for rate limits, 5xx responses, timeouts and dropped connections.

    Parsing and validation errors (``ValueError``) are terminal.
    """

    if isinstance(exc, ValueError):
        return False
    sc = getattr(exc, "status_code", None)
    if isinstance(sc, int):
        return sc == 429 or 500 <= sc < 600
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True
    # openai.APITimeoutError / APIConnectionError carry no status code.
    name = exc.__class__.__name__
    return name in {"APITimeoutError", "APIConnectionError"}


def call_with_retry(
    op: Callable[[float], T],
    policy: RetryPolicy,
    *,
    label: str,
    retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``op(timeout_s)`` under ``policy`` and return its value.

    Raises :class:`CapabilityError` once the attempt budget is spent or a
    non-retryable error occurs; the original exception is chained.
    """

    attempt = 1
    while True:
        t0 = time.perf_counter()
        try:
            return op(policy.timeout_s)
        except Exception as e:  # noqa: BLE001
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if attempt >= policy.max_attempts or not retryable(e):
                _logger.error(
                    "%s:failed_terminal attempts=%d latency_ms=%.2f error=%s",
                    label,
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                raise CapabilityError(f"{label} failed: {e}", attempts=attempt) from e
            _logger.warning(
                "%s:retry attempt=%d latency_ms=%.2f error=%s",
                label,
                attempt,
                dt_ms,
                e.__class__.__name__,
            )
            sleep(policy.delay_for(attempt))
            attempt += 1


__all__ = ["NO_RETRY", "RetryPolicy", "call_with_retry", "is_retryable"]
