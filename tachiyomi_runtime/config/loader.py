"""Configuration loader for the extension runtime.

Loads configuration from a JSON file and environment variables:
- ${ENV_VAR} substitution inside string values
- TACHIYOMI_* environment overrides applied last
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

from .config import RuntimeConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TACHIYOMI_RUNTIME_CONFIG"

_TRUE_VALUES = {"1", "true", "yes", "on"}

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively replace ${VAR} with os.environ values (unresolved tokens are kept)."""
    if isinstance(obj, str):
        def _replace(m: re.Match) -> str:
            return os.environ.get(m.group(1), m.group(0))

        return _ENV_VAR_RE.sub(_replace, obj)
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(v) for v in obj]
    return obj


def _env_flag(name: str) -> bool | None:
    value = os.environ.get(name)
    if value is None:
        return None
    return value.strip().lower() in _TRUE_VALUES


def apply_env_overrides(config: RuntimeConfig) -> RuntimeConfig:
    """Apply TACHIYOMI_* environment variables on top of file configuration."""
    if curl_path := os.environ.get("TACHIYOMI_CURL_PATH"):
        config.transport.curl_path = curl_path
    if proxy_url := os.environ.get("TACHIYOMI_PROXY_URL"):
        config.transport.proxy_url = proxy_url

    debug = _env_flag("TACHIYOMI_DEBUG_HTTP")
    if debug is None:
        debug = _env_flag("DEBUG_HTTP")
    if debug is not None:
        config.transport.debug_http = debug

    if max_wait := os.environ.get("TACHIYOMI_RATE_LIMIT_MAX_WAIT_MS"):
        try:
            config.rate_limit.max_wait_ms = int(max_wait)
        except ValueError:
            logger.warning(f"Ignoring invalid TACHIYOMI_RATE_LIMIT_MAX_WAIT_MS: {max_wait!r}")

    if isolation := os.environ.get("TACHIYOMI_ISOLATION"):
        if isolation in ("process", "thread"):
            config.worker.isolation = isolation
        else:
            logger.warning(f"Ignoring invalid TACHIYOMI_ISOLATION: {isolation!r}")

    return config


def get_config_path() -> Path:
    """Get the path to the active configuration file.

    Returns the first existing candidate, or the default user-level path
    (``~/.tachiyomi-runtime/config.json``) even if it does not exist.
    """
    if env_path := os.environ.get(CONFIG_ENV_VAR):
        return Path(env_path)

    candidates = [
        Path.cwd() / "tachiyomi-runtime.json",
        Path.home() / ".tachiyomi-runtime" / "config.json",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[-1]


def load_config_raw(path: Path) -> dict[str, Any]:
    """Load a config file with env-var substitution."""
    obj = json.loads(path.read_text(encoding="utf-8"))
    obj = _substitute_env_vars(obj)
    return obj if isinstance(obj, dict) else {}


def load_config(config_path: Optional[str | Path] = None) -> RuntimeConfig:
    """Load runtime configuration.

    Args:
        config_path: Optional path to config file

    Returns:
        RuntimeConfig; defaults when the file is missing or malformed
    """
    path = Path(config_path) if config_path else get_config_path()

    config = RuntimeConfig.default()
    if path.exists():
        try:
            config = RuntimeConfig.from_dict(load_config_raw(path))
            logger.debug(f"Loaded runtime config from {path}")
        except Exception as exc:
            logger.warning(f"Failed to load config from {path}: {exc}")
            config = RuntimeConfig.default()

    return apply_env_overrides(config)
