"""
Configuration for the portal sampling service.

Settings are resolved in this order (later wins):
1. Built-in defaults (``SamplingSettings``)
2. JSON file named by the PORTAL_SAMPLING_CONFIG environment variable
3. Individual environment variables:
   - PORTAL_SAMPLING_MAX_POINTS: default point budget for charts
   - PORTAL_SAMPLING_TIMEOUT: seconds before a worker request fails
     (``0`` or ``none`` disables the timeout)
   - PORTAL_SAMPLING_LOG_LEVEL: logging level name
   - PORTAL_SAMPLING_PORT: HTTP port for main.py
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .shared.logger import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "PORTAL_SAMPLING_"
CONFIG_FILE_ENV = ENV_PREFIX + "CONFIG"

# Environment variable suffix -> settings field
_ENV_FIELDS = {
    "MAX_POINTS": "default_max_points",
    "TIMEOUT": "request_timeout",
    "LOG_LEVEL": "log_level",
    "PORT": "port",
}

_DISABLED = {"", "0", "none", "off", "false"}


@dataclass
class SamplingSettings:
    """Runtime settings for the sampler, dispatcher and HTTP server."""

    default_max_points: int = 1000
    request_timeout: Optional[float] = 30.0
    log_level: str = "INFO"
    port: int = 8000

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SamplingSettings":
        """Build settings from a mapping, ignoring unknown keys.

        Values that cannot be converted keep their default and log a warning.
        """
        settings = cls()
        for name, raw in data.items():
            _apply(settings, name, raw)
        return settings


def _convert(name: str, raw: Any) -> Any:
    if name == "request_timeout":
        if raw is None or str(raw).strip().lower() in _DISABLED:
            return None
        timeout = float(raw)
        if timeout <= 0:
            return None
        return timeout
    if name in ("default_max_points", "port"):
        value = int(raw)
        if value < 1:
            raise ValueError(f"{name} must be positive, got {value}")
        return value
    return str(raw).strip().upper()


def _apply(settings: SamplingSettings, name: str, raw: Any) -> None:
    known = {f.name for f in fields(SamplingSettings)}
    if name not in known:
        logger.debug("Ignoring unknown setting %r", name)
        return
    try:
        setattr(settings, name, _convert(name, raw))
    except (TypeError, ValueError) as e:
        logger.warning("Invalid value %r for %s, keeping %r: %s", raw, name, getattr(settings, name), e)


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read config file %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s must contain a JSON object", path)
        return {}
    return data


def load_settings(environ: Optional[Mapping[str, str]] = None) -> SamplingSettings:
    """Resolve settings from defaults, the optional JSON file and the environment.

    Args:
        environ: Environment mapping, ``os.environ`` when omitted.
    """
    env = os.environ if environ is None else environ

    config_file = env.get(CONFIG_FILE_ENV)
    file_values = _read_config_file(Path(config_file)) if config_file else {}
    settings = SamplingSettings.from_dict(file_values)

    for suffix, name in _ENV_FIELDS.items():
        raw = env.get(ENV_PREFIX + suffix)
        if raw is not None:
            _apply(settings, name, raw)

    return settings
