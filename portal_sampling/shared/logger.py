"""
Centralized logging for the portal sampling service.

Level-based logging through Python's built-in logging module. The level
comes from ``PORTAL_SAMPLING_LOG_LEVEL`` (see ``portal_sampling.config``).

Usage:
    from portal_sampling.shared.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Dispatcher started")
    logger.warning("LTTB worker not available, sampling %d points inline", n)
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Per-request access lines drown the sampler logs when debugging
_NOISY_LOGGERS = ("uvicorn.access",)

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for the service.

    Call once at startup (main.py). Subsequent calls are no-ops.

    Args:
        level: Level name such as ``"DEBUG"`` or ``"warning"``. Unknown
            names fall back to INFO.
    """
    global _configured
    if _configured:
        return

    resolved = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(
        level=resolved,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger for a module.

    Args:
        name: Module name (typically ``__name__``).
    """
    return logging.getLogger(name)
