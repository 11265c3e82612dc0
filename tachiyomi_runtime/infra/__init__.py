from .rate_limit import GLOBAL_KEY, RateLimiter, RateLimiterRegistry, host_key, source_key

__all__ = ["GLOBAL_KEY", "RateLimiter", "RateLimiterRegistry", "host_key", "source_key"]
