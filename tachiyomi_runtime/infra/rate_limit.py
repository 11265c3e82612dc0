"""Per-source request rate limiting.

Token bucket kept as a log of grant timestamps. The hosted context is
single-threaded and has no cooperative yield point while an extension waits
for a response, so blocking is an active wait (repeated clock checks)
bounded by ``max_wait_ms``.

Examples:

    permits = 5,  period_ms = 1000     =>  5 requests per second
    permits = 10, period_ms = 120_000  =>  10 requests per 2 minutes
"""

from __future__ import annotations

import logging
import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Optional
from urllib.parse import urlsplit

from ..config import RateLimitConfig
from ..errors import RateLimitTimeout

logger = logging.getLogger(__name__)

# Scope that applies to every request issued by a source
GLOBAL_KEY = "*"

DEFAULT_MAX_WAIT_MS = 10_000


class RateLimiter:
    """
    Admission control for one source key.

    Invariant: after purging, ``_grants`` never holds more than ``permits``
    timestamps younger than ``period``.
    """

    def __init__(
        self,
        permits: int,
        period_ms: int = 1000,
        max_wait_ms: int = DEFAULT_MAX_WAIT_MS,
        spin_interval_ms: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        pause: Callable[[float], None] = time.sleep,
    ):
        if permits < 1:
            raise ValueError("permits must be at least 1")
        if period_ms <= 0:
            raise ValueError("period_ms must be positive")

        self.permits = permits
        self.period = period_ms / 1000.0
        self.max_wait = max_wait_ms / 1000.0
        self._spin_interval = spin_interval_ms / 1000.0
        self._clock = clock
        self._pause = pause
        self._grants: deque[float] = deque()

    def _purge(self, now: float) -> None:
        period_start = now - self.period
        while self._grants and self._grants[0] <= period_start:
            self._grants.popleft()

    def wait_time(self) -> float:
        """Seconds the next admission would have to wait (0 when free)."""
        now = self._clock()
        self._purge(now)
        if len(self._grants) < self.permits:
            return 0.0
        return max(0.0, self._grants[0] + self.period - now)

    def check(self) -> float:
        """
        Wait the next admission needs, without recording anything.

        Raises:
            RateLimitTimeout: The required wait exceeds ``max_wait``
        """
        wait = self.wait_time()
        if wait > self.max_wait:
            raise RateLimitTimeout(
                f"Rate limit wait of {wait * 1000:.0f}ms exceeds "
                f"maximum of {self.max_wait * 1000:.0f}ms",
                details={"wait_ms": int(wait * 1000), "max_wait_ms": int(self.max_wait * 1000)},
            )
        return wait

    def record(self, now: float | None = None) -> None:
        """Record a grant at ``now`` (default: the current time)"""
        if now is None:
            now = self._clock()
        self._purge(now)
        self._grants.append(now)

    def admit(self) -> float:
        """
        Block until a request may proceed, then record the admission.

        Returns:
            Seconds spent waiting

        Raises:
            RateLimitTimeout: The required wait exceeds ``max_wait``
        """
        wait = self.check()
        if wait > 0:
            busy_wait(wait, self._clock, self._pause, self._spin_interval)
        self.record()
        return wait

    def __len__(self) -> int:
        return len(self._grants)


def busy_wait(
    seconds: float,
    clock: Callable[[], float] = time.monotonic,
    pause: Callable[[float], None] = time.sleep,
    spin_interval: float = 0.0,
) -> None:
    """Spin on ``clock`` until ``seconds`` have passed"""
    end = clock() + seconds
    while clock() < end:
        # pause(0) yields the GIL between clock checks
        pause(spin_interval)


class RateLimiterRegistry:
    """
    One limiter per key, with separate limiters for every source.

    Rules registered from config or at module level are templates keyed by
    host or ``"*"``. Each source instantiates its own limiters from them the
    first time it issues a matching request, so two sources never share a
    limiter. Requests made outside a source call are keyed by bare host and
    ``"*"``. Keys without a limiter or a rule are unlimited.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        pause: Callable[[float], None] = time.sleep,
    ):
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._pause = pause
        self._limiters: dict[str, RateLimiter] = {}
        self._rules: dict[str, tuple[int, int]] = {}
        self.active_source: str | None = None

        for key, rule in self._config.limits.items():
            self.add_rule(key, rule.permits, rule.period_ms)

    def configure(self, key: str, permits: int, period_ms: int = 1000) -> RateLimiter:
        """Create (or replace) the limiter for ``key``."""
        limiter = RateLimiter(
            permits,
            period_ms,
            max_wait_ms=self._config.max_wait_ms,
            spin_interval_ms=self._config.spin_interval_ms,
            clock=self._clock,
            pause=self._pause,
        )
        self._limiters[key] = limiter
        logger.debug(f"Rate limit for {key}: {permits} per {period_ms}ms")
        return limiter

    def add_rule(self, scope: str | None, permits: int, period_ms: int = 1000) -> None:
        """
        Register a limit every source applies separately.

        Args:
            scope: Host (or URL) the rule covers; ``None`` or ``"*"`` for all requests
        """
        if permits < 1 or period_ms <= 0:
            raise ValueError(f"Invalid rate limit: {permits} per {period_ms}ms")
        scope = GLOBAL_KEY if scope in (None, GLOBAL_KEY) else host_key(scope)
        self._rules[scope] = (permits, period_ms)
        # Limiters built from an older version of this rule are rebuilt lazily
        for key in [k for k in self._limiters if _scope_of(k) == scope]:
            del self._limiters[key]
        logger.debug(f"Rate limit rule for {scope}: {permits} per {period_ms}ms")

    def limit(self, permits: int, period_ms: int = 1000, host: str | None = None) -> None:
        """
        Limit requests for the active source, or add a rule when none is active.

        Extensions call this at module level (every source gets the limit)
        or from inside a source call (only that source does).
        """
        if self.active_source is None:
            self.add_rule(host, permits, period_ms)
            return
        scope = host_key(host) if host else GLOBAL_KEY
        self.configure(source_key(self.active_source, scope), permits, period_ms)

    @contextmanager
    def bind_source(self, source_id: str | None):
        """Attribute requests made inside the block to ``source_id``"""
        previous = self.active_source
        self.active_source = None if source_id is None else str(source_id)
        try:
            yield
        finally:
            self.active_source = previous

    def get(self, key: str) -> RateLimiter | None:
        return self._limiters.get(key)

    def keys(self) -> list[str]:
        return list(self._limiters)

    def rules(self) -> dict[str, tuple[int, int]]:
        return dict(self._rules)

    def _limiter_for(self, source_id: str | None, scope: str) -> RateLimiter | None:
        key = source_key(source_id, scope)
        limiter = self._limiters.get(key)
        if limiter is None and scope in self._rules:
            limiter = self.configure(key, *self._rules[scope])
        return limiter

    def _admit_all(self, limiters: list[tuple[str, RateLimiter]]) -> float:
        # Every limiter is checked before any grant is recorded
        wait = 0.0
        for _, limiter in limiters:
            wait = max(wait, limiter.check())

        if wait > 0:
            busy_wait(wait, self._clock, self._pause, self._config.spin_interval_ms / 1000.0)
            logger.debug(
                f"Rate limited {', '.join(key for key, _ in limiters)} for {wait * 1000:.0f}ms"
            )

        now = self._clock()
        for _, limiter in limiters:
            limiter.record(now)
        return wait

    def admit(self, key: str) -> float:
        limiter = self._limiters.get(key)
        if limiter is None:
            return 0.0
        return self._admit_all([(key, limiter)])

    def admit_url(self, url: str, source_id: str | None = None) -> float:
        """
        Admit a request against its host key and the ``"*"`` key.

        Both keys belong to ``source_id`` (default: the active source). The
        request is admitted on all of them or none.

        Raises:
            RateLimitTimeout: Any applicable limiter would wait past its ceiling
        """
        if source_id is None:
            source_id = self.active_source
        host = urlsplit(url).netloc.lower()
        scopes = [host, GLOBAL_KEY] if host else [GLOBAL_KEY]

        limiters = []
        for scope in scopes:
            limiter = self._limiter_for(source_id, scope)
            if limiter is not None:
                limiters.append((source_key(source_id, scope), limiter))
        return self._admit_all(limiters)


def source_key(source_id: str | None, scope: str = GLOBAL_KEY) -> str:
    """Limiter key for ``scope`` (host or ``"*"``) within one source"""
    if source_id is None:
        return scope
    return f"{source_id}|{scope}"


def _scope_of(key: str) -> str:
    return key.rpartition("|")[2]


def host_key(url: str) -> str:
    """Source key for a URL or bare host name"""
    netloc = urlsplit(url).netloc
    return (netloc or url).lower()
