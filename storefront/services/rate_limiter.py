"""
Login Rate Limiter

In-memory brute-force protection for PIN logins: a sliding window of
failed attempts per identifier, followed by a lockout once the limit is
reached.

Limitations:
    - State lives in this process only and is lost on restart
    - Each worker/instance keeps its own counters; behind a load balancer
      the effective limit is multiplied by the number of instances
    - Treat it as advisory protection, not a security guarantee

Author: Khalil Bannouri
Version: 3.0.0
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


@dataclass
class RateLimitEntry:
    """Failed-attempt counter for one identifier."""
    identifier: str
    attempts: int
    window_start: float
    locked_until: Optional[float] = None


@dataclass
class RateLimitResult:
    """
    Outcome of a rate limit check.

    Attributes:
        allowed: Whether another attempt may be made now
        remaining: Attempts left in the current window
        retry_after: Seconds until the lockout ends (None when not locked)
    """
    allowed: bool
    remaining: int
    retry_after: Optional[float] = None


class LoginRateLimiter:
    """
    Thread-safe failed-attempt limiter with lockout.

    ``check`` never mutates state; only ``record_failed_attempt``,
    ``clear`` and ``sweep`` do. Expired entries are treated as fresh on
    read, so ``sweep`` only bounds memory.

    Example:
        >>> limiter = LoginRateLimiter()
        >>> limiter.record_failed_attempt("staff:10.0.0.1")
        >>> limiter.check("staff:10.0.0.1").remaining
        4
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: float = 15 * 60,
        lockout_seconds: float = 15 * 60,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if window_seconds <= 0 or lockout_seconds <= 0:
            raise ValueError("window_seconds and lockout_seconds must be > 0")
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.lockout_seconds = lockout_seconds
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def _window_expired(self, entry: RateLimitEntry, now: float) -> bool:
        return now - entry.window_start > self.window_seconds

    def check(self, identifier: str) -> RateLimitResult:
        """Report whether ``identifier`` may attempt a login now."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(identifier)

            if entry is not None and entry.locked_until is not None:
                if now < entry.locked_until:
                    return RateLimitResult(
                        allowed=False,
                        remaining=0,
                        retry_after=entry.locked_until - now,
                    )
                attempts = 0
            elif entry is None or self._window_expired(entry, now):
                attempts = 0
            else:
                attempts = entry.attempts

        return RateLimitResult(
            allowed=attempts < self.max_attempts,
            remaining=max(0, self.max_attempts - attempts),
        )

    def record_failed_attempt(self, identifier: str) -> None:
        """Count a failed attempt, locking the identifier out at the limit."""
        with self._lock:
            now = self._clock()
            entry = self._entries.get(identifier)

            lockout_over = (
                entry is not None
                and entry.locked_until is not None
                and now >= entry.locked_until
            )
            if entry is None or lockout_over or self._window_expired(entry, now):
                entry = RateLimitEntry(identifier=identifier, attempts=1, window_start=now)
                self._entries[identifier] = entry
            else:
                entry.attempts += 1

            if entry.attempts >= self.max_attempts and entry.locked_until is None:
                entry.locked_until = now + self.lockout_seconds
                logger.warning(
                    f"Rate limit lockout for {identifier} "
                    f"({entry.attempts} failed attempts, {self.lockout_seconds:.0f}s)"
                )

    def clear(self, identifier: str) -> None:
        """Forget ``identifier`` (called after a successful login)."""
        with self._lock:
            self._entries.pop(identifier, None)

    def sweep(self) -> int:
        """
        Evict entries older than window + lockout.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            max_age = self.window_seconds + self.lockout_seconds
            stale = [
                key for key, entry in self._entries.items()
                if now - entry.window_start > max_age
            ]
            for key in stale:
                del self._entries[key]

        if stale:
            logger.debug(f"Rate limiter swept {len(stale)} stale entries")
        return len(stale)


def client_identifier(headers: Mapping[str, str]) -> str:
    """
    Best-effort client address from proxy headers.

    Uses the first X-Forwarded-For hop, then X-Real-IP. Requests with
    neither share the single ``"unknown"`` bucket.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return UNKNOWN_CLIENT
