from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_seconds: float = 0.0

    @classmethod
    def stop(cls) -> RetryDecision:
        return cls(retry=False)


def parse_retry_after_seconds(value: str | None) -> float | None:
    """Read a ``Retry-After`` header given either as seconds or as an HTTP date."""
    if value is None or not value.strip():
        return None
    candidate = value.strip()
    try:
        seconds = float(candidate)
    except ValueError:
        seconds = None
    if seconds is not None:
        return seconds if seconds >= 0 else None

    try:
        parsed = parsedate_to_datetime(candidate)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return max(0.0, (parsed - datetime.now(UTC)).total_seconds())


def compute_delay(
    *,
    attempt: int,
    base_delay_seconds: float,
    max_delay_seconds: float,
    retry_after_header: str | None = None,
    jitter_ratio: float = 0.2,
    seed: int = 17,
) -> float:
    """Backoff for ``attempt`` (1-based), capped at ``max_delay_seconds``.

    A server-provided ``Retry-After`` wins over the exponential schedule. Jitter is
    seeded per attempt so the same attempt always waits the same time.
    """
    hinted = parse_retry_after_seconds(retry_after_header)
    if hinted is not None:
        return min(max_delay_seconds, hinted)

    step = max(1, attempt)
    delay = min(max_delay_seconds, base_delay_seconds * (2 ** (step - 1)))
    spread = random.Random(seed + step).uniform(-jitter_ratio, jitter_ratio)
    return max(0.0, delay * (1.0 + spread))


async def async_retry(  # noqa: UP047
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    classify: Callable[[Exception, int], RetryDecision],
    sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:
            if attempt >= max_attempts:
                raise
            decision = classify(exc, attempt)
            if not decision.retry:
                raise
            await sleep_fn(max(0.0, decision.delay_seconds))
