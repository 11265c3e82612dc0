"""Runtime configuration"""

from .config import (
    RateLimitConfig,
    RateLimitRule,
    RuntimeConfig,
    TransportConfig,
    WorkerConfig,
)
from .loader import apply_env_overrides, get_config_path, load_config

__all__ = [
    "RuntimeConfig",
    "TransportConfig",
    "RateLimitConfig",
    "RateLimitRule",
    "WorkerConfig",
    "load_config",
    "get_config_path",
    "apply_env_overrides",
]
