"""
Per-service rate limiting for upstream calls.

Each service gets a token bucket (bursts, smooth average rate) checked
against a one-minute sliding window of the requests actually sent. 429
responses block the service until the advertised reset; 5xx responses add a
short, growing cooldown. Nothing here sleeps: try_acquire raises RateLimited
and the caller decides what to do. Providers call in from worker threads, so
every limiter guards its state with its own lock.
"""

import time
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Optional

from .constants import (
    LIBRARY_REQUESTS_PER_MINUTE,
    SEARCH_REQUESTS_PER_MINUTE,
    EMBED_CHECK_REQUESTS_PER_MINUTE,
)
from .exceptions import RateLimited

LIBRARY_SERVICE = 'library'
SEARCH_SERVICE = 'search'
EMBED_CHECK_SERVICE = 'embed_check'

# Cooldown after server errors grows from about 1.5s up to this cap
SERVER_ERROR_COOLDOWN_CAP_SECONDS = 30.0


@dataclass(frozen=True)
class RateLimitConfig:
    """Limits for one upstream service."""
    max_requests_per_minute: int
    burst_capacity: int = 5
    window_seconds: int = 60
    retry_after_seconds: int = 60        # base for 429s that carry no Retry-After
    backoff_multiplier: float = 1.5
    max_backoff_seconds: int = 300
    cooldown_on_server_errors: bool = True

    @property
    def tokens_per_second(self) -> float:
        return self.max_requests_per_minute / 60.0


@dataclass
class RateLimitState:
    """Mutable bookkeeping of one limiter."""
    tokens: float = 0.0
    refilled_at: float = 0.0
    sent: Deque[float] = field(default_factory=deque)
    failures: int = 0
    backoff: float = 0.0
    blocked_until: Optional[float] = None    # set by 429
    cooldown_until: Optional[float] = None   # set by 5xx
    lock: threading.RLock = field(default_factory=threading.RLock)


class TokenBucketRateLimiter:
    """Token bucket for one service, validated against a sliding window."""

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.time):
        self.config = config
        self._clock = clock
        self.state = RateLimitState(tokens=float(config.burst_capacity), refilled_at=clock())
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def can_proceed(self) -> bool:
        with self.state.lock:
            now = self._advance()
            return self._blocking_delay(now) <= 0

    def try_acquire(self) -> bool:
        """Take one token if the service may be called now; never waits."""
        with self.state.lock:
            now = self._advance()
            if self._blocking_delay(now) > 0:
                return False
            self.state.tokens -= 1.0
            self.state.sent.append(now)
            self._logger.debug(f"Token taken, {self.state.tokens:.2f} left")
            return True

    def report_response(self, status_code: int, retry_after: Optional[float] = None) -> None:
        """Adapt to an upstream answer: 429 blocks, 5xx cools down, 2xx clears both."""
        with self.state.lock:
            now = self._clock()
            state = self.state

            if status_code == 429:
                state.failures += 1
                if not retry_after:
                    state.backoff = min(
                        self.config.retry_after_seconds * self.config.backoff_multiplier ** state.failures,
                        self.config.max_backoff_seconds,
                    )
                    retry_after = state.backoff
                state.blocked_until = now + retry_after
                self._logger.warning(f"Upstream rate limit hit, blocked for {retry_after:.1f}s")
                return

            if 200 <= status_code < 300:
                state.failures = 0
                state.backoff = 0.0
                state.cooldown_until = None
                return

            if 500 <= status_code < 600:
                state.failures += 1
                if self.config.cooldown_on_server_errors:
                    state.backoff = min(self.config.backoff_multiplier ** state.failures,
                                        SERVER_ERROR_COOLDOWN_CAP_SECONDS)
                    state.cooldown_until = now + state.backoff

    def wait_time(self) -> float:
        """Seconds until a request would be allowed; 0.0 when allowed now."""
        with self.state.lock:
            now = self._advance()
            return max(0.0, self._blocking_delay(now))

    def get_status(self) -> Dict[str, Any]:
        with self.state.lock:
            self._advance()
            return {
                'tokens_available': self.state.tokens,
                'max_tokens': self.config.burst_capacity,
                'requests_in_window': len(self.state.sent),
                'max_requests_per_minute': self.config.max_requests_per_minute,
                'is_rate_limited': self.state.blocked_until is not None,
                'rate_limit_reset_time': self.state.blocked_until,
                'consecutive_failures': self.state.failures,
                'current_backoff': self.state.backoff,
            }

    def _blocking_delay(self, now: float) -> float:
        """Longest delay imposed by any limit; <= 0 means a request may go out. Caller holds the lock."""
        delays = [0.0]
        if self.state.blocked_until is not None:
            delays.append(self.state.blocked_until - now)
        if self.state.cooldown_until is not None:
            delays.append(self.state.cooldown_until - now)
        if self.state.tokens < 1.0:
            delays.append((1.0 - self.state.tokens) / self.config.tokens_per_second)
        if len(self.state.sent) >= self.config.max_requests_per_minute:
            delays.append(self.state.sent[0] + self.config.window_seconds - now)
        return max(delays)

    def _advance(self) -> float:
        """Refill tokens, slide the window and lift an elapsed block; returns now. Caller holds the lock."""
        now = self._clock()
        state = self.state

        elapsed = now - state.refilled_at
        if elapsed > 0:
            state.tokens = min(state.tokens + elapsed * self.config.tokens_per_second,
                               float(self.config.burst_capacity))
            state.refilled_at = now

        while state.sent and state.sent[0] < now - self.config.window_seconds:
            state.sent.popleft()

        if state.blocked_until is not None and now >= state.blocked_until:
            state.blocked_until = None
            self._logger.info("Rate limit block expired, resuming requests")
        return now


class ServiceRateLimitManager:
    """
    One limiter per upstream service.

    Owned by the composition root and injected into each client. Services
    that were never registered are not limited. Safe to call from the worker
    threads the providers run their requests on.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._limiters: Dict[str, TokenBucketRateLimiter] = {}
        self._registry_lock = threading.RLock()
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def register_service(self, service_name: str, config: RateLimitConfig) -> None:
        with self._registry_lock:
            self._limiters[service_name] = TokenBucketRateLimiter(config, clock=self._clock)
        self._logger.info(f"Rate limiting '{service_name}' to {config.max_requests_per_minute} req/min "
                          f"(burst {config.burst_capacity})")

    def _limiter(self, service_name: str) -> Optional[TokenBucketRateLimiter]:
        with self._registry_lock:
            return self._limiters.get(service_name)

    def can_proceed(self, service_name: str) -> bool:
        limiter = self._limiter(service_name)
        return limiter is None or limiter.can_proceed()

    def try_acquire(self, service_name: str) -> None:
        """
        Consume budget for one request to service_name.

        Raises:
            RateLimited: when the service has no budget left
        """
        limiter = self._limiter(service_name)
        if limiter is None or limiter.try_acquire():
            return
        wait = limiter.wait_time()
        raise RateLimited(f"{service_name} request budget exhausted, retry in {wait:.1f}s",
                          service=service_name, retry_after=wait)

    def report_response(self, service_name: str, status_code: int,
                        retry_after: Optional[float] = None) -> None:
        limiter = self._limiter(service_name)
        if limiter is not None:
            limiter.report_response(status_code, retry_after)

    def get_wait_time(self, service_name: str) -> float:
        limiter = self._limiter(service_name)
        return limiter.wait_time() if limiter is not None else 0.0

    def get_service_status(self, service_name: str) -> Optional[Dict[str, Any]]:
        limiter = self._limiter(service_name)
        return limiter.get_status() if limiter is not None else None

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        with self._registry_lock:
            limiters = dict(self._limiters)
        return {name: limiter.get_status() for name, limiter in limiters.items()}

    def reset_service(self, service_name: str) -> bool:
        """Replace a service's limiter with a fresh one; False if it is unknown."""
        with self._registry_lock:
            limiter = self._limiters.get(service_name)
            if limiter is None:
                return False
            self._limiters[service_name] = TokenBucketRateLimiter(limiter.config, clock=self._clock)
        self._logger.info(f"Reset rate limiter for '{service_name}'")
        return True


def setup_default_rate_limiters(manager: ServiceRateLimitManager) -> ServiceRateLimitManager:
    """Register the upstream services the core talks to."""
    manager.register_service(LIBRARY_SERVICE, RateLimitConfig(
        max_requests_per_minute=LIBRARY_REQUESTS_PER_MINUTE,
        burst_capacity=10,
    ))
    manager.register_service(SEARCH_SERVICE, RateLimitConfig(
        max_requests_per_minute=SEARCH_REQUESTS_PER_MINUTE,
        burst_capacity=3,
        retry_after_seconds=120,
    ))
    manager.register_service(EMBED_CHECK_SERVICE, RateLimitConfig(
        max_requests_per_minute=EMBED_CHECK_REQUESTS_PER_MINUTE,
        burst_capacity=10,
    ))
    return manager
