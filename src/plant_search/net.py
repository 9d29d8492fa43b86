"""Per-source rate limiting and circuit breaking for upstream HTTP calls.

Guards are keyed by provider tag and shared for the life of the process so
that concurrent requests hitting one upstream API respect a single budget.
Defaults can be overridden per tag with ``RATE_<TAG>_*`` / ``CB_<TAG>_*``
environment variables, falling back to ``RATE_DEFAULT_*`` / ``CB_DEFAULT_*``.
"""
from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass


@dataclass
class RateLimitConfig:
    max_calls: int = 5
    window_seconds: float = 1.0
    min_interval: float = 0.0  # enforce spacing between calls


@dataclass
class BreakerConfig:
    max_failures: int = 5
    window_seconds: float = 60.0
    cooldown_seconds: float = 120.0


class AsyncRateLimiter:
    """Sliding-window rate limiter with min-interval spacing."""

    def __init__(self, cfg: RateLimitConfig) -> None:
        self.cfg = cfg
        self._lock = asyncio.Lock()
        self._calls: list[float] = []  # timestamps
        self._last_call: float = 0.0

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            wait = max(0.0, self.cfg.min_interval - (now - self._last_call))
            if wait > 0:
                await asyncio.sleep(wait)
                now = time.monotonic()
            self._evict(now)
            if len(self._calls) >= self.cfg.max_calls:
                wait = self._calls[0] + self.cfg.window_seconds - now
                if wait > 0:
                    await asyncio.sleep(wait)
                    now = time.monotonic()
                    self._evict(now)
            stamp = time.monotonic()
            self._calls.append(stamp)
            self._last_call = stamp

    def _evict(self, now: float) -> None:
        cutoff = now - self.cfg.window_seconds
        self._calls = [t for t in self._calls if t >= cutoff]


class CircuitBreaker:
    """Opens after ``max_failures`` within the window; half-opens after cooldown."""

    def __init__(self, cfg: BreakerConfig) -> None:
        self.cfg = cfg
        self._failures: list[float] = []
        self._opened_at: float | None = None

    @property
    def is_open(self) -> bool:
        if self._opened_at is None:
            return False
        return time.monotonic() - self._opened_at < self.cfg.cooldown_seconds

    def allow_call(self) -> bool:
        now = time.monotonic()
        if self._opened_at is not None:
            if now - self._opened_at < self.cfg.cooldown_seconds:
                return False
            # half-open: let one call through
            self._opened_at = None
            self._failures.clear()
        cutoff = now - self.cfg.window_seconds
        self._failures = [t for t in self._failures if t >= cutoff]
        return True

    def record_success(self) -> None:
        self._failures.clear()
        self._opened_at = None

    def record_failure(self) -> None:
        now = time.monotonic()
        cutoff = now - self.cfg.window_seconds
        self._failures = [t for t in self._failures if t >= cutoff]
        self._failures.append(now)
        if len(self._failures) >= self.cfg.max_failures:
            self._opened_at = now


def _env(prefix: str, key: str, setting: str, default: object) -> str:
    return os.getenv(
        f"{prefix}_{key.upper()}_{setting}",
        os.getenv(f"{prefix}_DEFAULT_{setting}", str(default)),
    )


def rate_limit_config(key: str, default: RateLimitConfig | None = None) -> RateLimitConfig:
    """Rate limit for ``key`` with environment overrides applied."""
    base = default or RateLimitConfig()
    return RateLimitConfig(
        max_calls=int(_env("RATE", key, "MAX", base.max_calls)),
        window_seconds=float(_env("RATE", key, "WINDOW", base.window_seconds)),
        min_interval=float(_env("RATE", key, "MIN_INTERVAL", base.min_interval)),
    )


def breaker_config(key: str, default: BreakerConfig | None = None) -> BreakerConfig:
    """Circuit breaker thresholds for ``key`` with environment overrides applied."""
    base = default or BreakerConfig()
    return BreakerConfig(
        max_failures=int(_env("CB", key, "THRESHOLD", base.max_failures)),
        window_seconds=float(_env("CB", key, "WINDOW", base.window_seconds)),
        cooldown_seconds=float(_env("CB", key, "COOLDOWN", base.cooldown_seconds)),
    )


class NetGuards:
    """Registry of per-source rate limiters and circuit breakers."""

    def __init__(self) -> None:
        self._limiters: dict[str, AsyncRateLimiter] = {}
        self._breakers: dict[str, CircuitBreaker] = {}

    def get_limiter(self, key: str, default: RateLimitConfig | None = None) -> AsyncRateLimiter:
        key = key.lower()
        if key not in self._limiters:
            self._limiters[key] = AsyncRateLimiter(rate_limit_config(key, default))
        return self._limiters[key]

    def get_breaker(self, key: str, default: BreakerConfig | None = None) -> CircuitBreaker:
        key = key.lower()
        if key not in self._breakers:
            self._breakers[key] = CircuitBreaker(breaker_config(key, default))
        return self._breakers[key]

    def reset(self) -> None:
        self._limiters.clear()
        self._breakers.clear()

    def report_status(self) -> dict[str, dict]:
        """Snapshot of breaker state and rate config, keyed by source."""
        out: dict[str, dict] = {}
        for key, breaker in self._breakers.items():
            out.setdefault(key, {})["circuit_open"] = breaker.is_open
        for key, limiter in self._limiters.items():
            out.setdefault(key, {})["rate"] = {
                "max_calls": limiter.cfg.max_calls,
                "window_seconds": limiter.cfg.window_seconds,
                "min_interval": limiter.cfg.min_interval,
            }
        return out


# Process-wide guards, shared across requests
GUARDS = NetGuards()
