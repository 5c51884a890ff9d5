from __future__ import annotations
import asyncio, time
from typing import Awaitable, Callable, Protocol

Sleep = Callable[[float], Awaitable[None]]


class RateLimiter(Protocol):
    async def wait(self) -> None:
        """Block until the next request may start."""

    def penalize(self, retry_after: float | None = None) -> None:
        """Report an explicit rate-limit signal from the provider."""


class FixedDelayLimiter:
    """Constant pause between chunks. A provider penalty is added once to the next wait."""

    def __init__(self, delay_s: float = 0.1, *, sleep: Sleep = asyncio.sleep) -> None:
        self.delay_s = max(0.0, delay_s)
        self._penalty = 0.0
        self._sleep = sleep

    async def wait(self) -> None:
        delay = self.delay_s + self._penalty
        self._penalty = 0.0
        if delay > 0:
            await self._sleep(delay)

    def penalize(self, retry_after: float | None = None) -> None:
        self._penalty = max(self._penalty, retry_after if retry_after is not None else self.delay_s)


class TokenBucketLimiter:
    """
    Token bucket that adapts to provider signals:
      - each penalty halves the refill rate (never below `min_rate`);
      - each wait that did not have to back off recovers 10% towards `rate`.
    """
    def __init__(
        self,
        rate: float,
        burst: int = 1,
        *,
        min_rate: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if rate <= 0 or burst < 1:
            raise ValueError("rate must be > 0 and burst >= 1")
        self.rate = rate
        self.current_rate = rate
        self.burst = burst
        self.min_rate = min(min_rate, rate)
        self._tokens = float(burst)
        self._clock = clock
        self._sleep = sleep
        self._last = clock()
        self._hold_until = 0.0

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(float(self.burst), self._tokens + (now - self._last) * self.current_rate)
        self._last = now

    async def wait(self) -> None:
        hold = self._hold_until - self._clock()
        if hold > 0:
            await self._sleep(hold)
            self._last = self._clock()  # no refill while held
        self._refill()
        if self._tokens < 1.0:
            await self._sleep((1.0 - self._tokens) / self.current_rate)
            self._refill()
        else:
            self.current_rate = min(self.rate, self.current_rate * 1.1)
        self._tokens = max(0.0, self._tokens - 1.0)

    def penalize(self, retry_after: float | None = None) -> None:
        self.current_rate = max(self.min_rate, self.current_rate / 2)
        self._tokens = 0.0
        if retry_after:
            self._hold_until = max(self._hold_until, self._clock() + retry_after)
