"""
Rate Limiting

In-process request counter with reset-based windows: once a window expires,
the next request starts a fresh window with a count of one.

Counters live in this process only. With several instances behind a load
balancer each instance enforces its own budget; sharing counters requires an
external key-value store keyed the same way (``prefix:identifier``).
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from starlette.requests import Request

from reflets.infrastructure.exceptions import RateLimitError


logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "default"
LOOPBACK_FALLBACK = "127.0.0.1"
SWEEP_INTERVAL_SECONDS = 5 * 60


@dataclass(frozen=True)
class RateLimitConfig:
    """Budget for one class of endpoint."""
    limit: int
    window_seconds: int
    prefix: Optional[str] = None


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: datetime
    retry_after_seconds: Optional[int] = None


@dataclass
class RateLimitRecord:
    count: int
    window_start: float


# Predefined budgets for public endpoints
RATE_LIMITS: Dict[str, RateLimitConfig] = {
    # 5 attempts per IP per hour
    "signup": RateLimitConfig(limit=5, window_seconds=3600, prefix="signup"),
    "slug_check": RateLimitConfig(limit=30, window_seconds=60, prefix="slug-check"),
    "general": RateLimitConfig(limit=100, window_seconds=60, prefix="general"),
    # Guards against brute-forcing checkout session ids
    "verify_payment": RateLimitConfig(limit=10, window_seconds=3600, prefix="verify-payment"),
    "stripe_checkout": RateLimitConfig(limit=5, window_seconds=3600, prefix="stripe-checkout"),
}


class RateLimiter:
    """
    Counter table keyed by ``prefix:identifier``.

    Args:
        clock: Returns the current time in seconds since the epoch.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._records: Dict[str, RateLimitRecord] = {}
        self._windows: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def check(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """
        Count one request for ``identifier`` and report whether it is allowed.

        A ``limit`` of 0 rejects every request, including the first.
        """
        prefix = config.prefix or DEFAULT_PREFIX
        key = f"{prefix}:{identifier}"
        window = float(config.window_seconds)

        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)

            record = self._records.get(key)
            if record is None or now >= record.window_start + window:
                record = RateLimitRecord(count=1, window_start=now)
                self._records[key] = record
                self._windows[key] = window
            else:
                record.count += 1

            window_end = record.window_start + window
            allowed = record.count <= config.limit
            remaining = max(0, config.limit - record.count)

        retry_after = None
        if not allowed:
            retry_after = math.ceil(window_end - now)

        return RateLimitResult(
            allowed=allowed,
            remaining=remaining,
            reset_at=datetime.fromtimestamp(window_end, tz=timezone.utc),
            retry_after_seconds=retry_after,
        )

    def enforce(self, identifier: str, config: RateLimitConfig) -> RateLimitResult:
        """Like ``check`` but raises ``RateLimitError`` when the budget is spent."""
        result = self.check(identifier, config)
        if not result.allowed:
            logger.warning(
                f"Rate limit exceeded for {config.prefix or DEFAULT_PREFIX}:{identifier}"
            )
            raise RateLimitError(
                retry_after=result.retry_after_seconds,
                reset_at=result.reset_at,
                remaining=result.remaining,
            )
        return result

    def reset(self) -> None:
        """Forget every counter."""
        with self._lock:
            self._records.clear()
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._records)

    def _maybe_sweep(self, now: float) -> None:
        # Caller holds the lock.
        if now - self._last_sweep < SWEEP_INTERVAL_SECONDS:
            return
        expired = [
            key for key, record in self._records.items()
            if now >= record.window_start + self._windows.get(key, 0.0)
        ]
        for key in expired:
            del self._records[key]
            self._windows.pop(key, None)
        self._last_sweep = now


def get_client_ip(request: Request) -> str:
    """
    Extract the caller's IP from proxy headers.

    Order: first entry of X-Forwarded-For, X-Real-IP, CF-Connecting-IP,
    then a loopback fallback.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    cf_connecting = request.headers.get("cf-connecting-ip")
    if cf_connecting:
        return cf_connecting.strip()

    return LOOPBACK_FALLBACK
