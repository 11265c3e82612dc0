"""
Runtime configuration

Provides configurable limits for the transport, the rate limiter's active
wait, and the isolated execution context.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal


@dataclass
class TransportConfig:
    """
    Transport configuration

    Controls how the HTTP hook performs requests for hosted extensions.
    """
    backend: Literal["curl", "httpx"] = "curl"
    curl_path: str = "curl"

    # Prefix prepended to every target URL (target is percent-encoded)
    proxy_url: str | None = None

    # Per-request cap passed to the backend; None means no cap
    max_time_s: float | None = None

    max_output_bytes: int = 50 * 1024 * 1024  # 50MB

    # Log every outgoing request at INFO
    debug_http: bool = False


@dataclass
class RateLimitRule:
    """permits = 5, period_ms = 1000  =>  5 requests per second"""
    permits: int
    period_ms: int = 1000


@dataclass
class RateLimitConfig:
    """
    Rate limiter configuration

    The limiter blocks with an active wait inside the isolated context;
    ``max_wait_ms`` bounds a single wait. ``limits`` are rules keyed by host
    or ``"*"`` that every source applies with its own limiters.
    """
    max_wait_ms: int = 10_000
    spin_interval_ms: float = 0.0
    limits: dict[str, RateLimitRule] = field(default_factory=dict)


@dataclass
class WorkerConfig:
    """
    Isolated execution context configuration
    """
    isolation: Literal["process", "thread"] = "process"
    start_method: Literal["spawn", "fork", "forkserver"] = "spawn"

    # How long dispose() waits for the context before abandoning it
    join_timeout_s: float = 1.0


@dataclass
class RuntimeConfig:
    """
    Complete runtime configuration

    Top-level configuration combining all subsystems.
    """
    transport: TransportConfig = None
    rate_limit: RateLimitConfig = None
    worker: WorkerConfig = None

    def __post_init__(self):
        """Initialize default configs if not provided"""
        if self.transport is None:
            self.transport = TransportConfig()
        if self.rate_limit is None:
            self.rate_limit = RateLimitConfig()
        if self.worker is None:
            self.worker = WorkerConfig()

    @classmethod
    def default(cls) -> "RuntimeConfig":
        """Create default configuration"""
        return cls()

    @classmethod
    def in_thread(cls) -> "RuntimeConfig":
        """Create configuration that hosts extensions on a worker thread"""
        return cls(worker=WorkerConfig(isolation="thread"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RuntimeConfig":
        """Build configuration from a decoded config file; unknown keys are ignored"""
        transport = _pick(TransportConfig, data.get("transport"))
        worker = _pick(WorkerConfig, data.get("worker"))

        rate_data = dict(data.get("rate_limit") or data.get("rateLimit") or {})
        limits = {
            key: RateLimitRule(**_known(RateLimitRule, rule))
            for key, rule in (rate_data.pop("limits", None) or {}).items()
        }
        rate_limit = RateLimitConfig(**_known(RateLimitConfig, rate_data), limits=limits)

        return cls(transport=transport, rate_limit=rate_limit, worker=worker)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _known(cls: type, data: dict[str, Any] | None) -> dict[str, Any]:
    names = set(cls.__dataclass_fields__)
    return {k: v for k, v in (data or {}).items() if k in names and k != "limits"}


def _pick(cls: type, data: dict[str, Any] | None):
    return cls(**_known(cls, data))
