"""Resilience helpers for completion requests and quality-gated re-drafts."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Protocol, TypeVar

LOGGER = logging.getLogger("novelsmith.services.resilience")

T = TypeVar("T")


class BackoffStrategy(Protocol):
    def compute(self, attempt: int) -> float:
        ...


@dataclass(frozen=True)
class ExponentialBackoff:
    """Configuration for exponential backoff timing."""

    multiplier: float = 0.5
    min_interval: float = 0.5
    max_interval: float = 4.0

    def compute(self, attempt: int) -> float:
        """Return the delay before the next attempt."""

        delay = self.multiplier * (2 ** (attempt - 1))
        bounded = max(self.min_interval, delay)
        return min(self.max_interval, bounded)


@dataclass(frozen=True)
class LinearBackoff:
    """Delay proportional to the attempt number, capped."""

    step: float = 2.0
    max_interval: float = 30.0

    def compute(self, attempt: int) -> float:
        return min(self.max_interval, self.step * attempt)


@dataclass(frozen=True)
class FixedBackoff:
    interval: float = 1.0

    def compute(self, attempt: int) -> float:
        return self.interval


class RetryExhausted(RuntimeError):
    """Raised when every attempt of a bounded retry failed with a retryable error."""

    def __init__(self, label: str, *, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"{label} failed after {attempts} attempt(s): {last_error}")
        self.label = label
        self.last_error = last_error
        self.attempts = attempts


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of a bounded retry: the value, how many attempts ran, and whether it was accepted."""

    value: T
    attempts: int
    accepted: bool = True


ErrorClassifier = Callable[[BaseException, int], Optional[float]]


async def bounded_retry(
    operation: Callable[[int], Awaitable[T]],
    *,
    max_attempts: int,
    classify: ErrorClassifier | None = None,
    accept: Callable[[T], bool] | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    label: str = "operation",
) -> RetryOutcome[T]:
    """Run ``operation`` up to ``max_attempts`` times.

    ``operation`` receives the 1-based attempt number. Exceptions are passed to
    ``classify``, which returns the delay before the next attempt or ``None``
    when the error is fatal; without a classifier every error is fatal. A
    result rejected by ``accept`` triggers another attempt immediately; the
    final attempt's result is returned with ``accepted=False`` once the budget
    is spent. Exhausting the budget on errors raises :class:`RetryExhausted`.
    """

    if max_attempts <= 0:
        raise ValueError("max_attempts must be at least 1")
    pause = sleep or asyncio.sleep

    for attempt in range(1, max_attempts + 1):
        try:
            value = await operation(attempt)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            delay = classify(exc, attempt) if classify is not None else None
            if delay is None:
                raise
            LOGGER.warning(
                "retry.failure",
                extra={
                    "extra_payload": {
                        "operation": label,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    }
                },
            )
            if attempt >= max_attempts:
                raise RetryExhausted(label, last_error=exc, attempts=attempt) from exc
            if delay > 0:
                await pause(delay)
            continue

        if accept is None or accept(value):
            return RetryOutcome(value=value, attempts=attempt)
        if attempt >= max_attempts:
            return RetryOutcome(value=value, attempts=attempt, accepted=False)
        LOGGER.info(
            "retry.rejected",
            extra={"extra_payload": {"operation": label, "attempt": attempt}},
        )

    raise AssertionError("unreachable")  # pragma: no cover


__all__ = [
    "BackoffStrategy",
    "ExponentialBackoff",
    "FixedBackoff",
    "LinearBackoff",
    "RetryExhausted",
    "RetryOutcome",
    "bounded_retry",
]
