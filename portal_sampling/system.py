"""
System API routes for the portal sampling service.

This module provides FastAPI routes for health and version information.
"""

import platform
import sys
from typing import Dict

from fastapi import APIRouter

router = APIRouter()


def _get_package_versions() -> Dict[str, str]:
    """Get versions of the packages the sampler depends on."""
    packages = {}

    for name in ("numpy", "fastapi", "pydantic", "uvicorn", "orjson"):
        try:
            module = __import__(name)
            packages[name] = getattr(module, "__version__", "unknown")
        except ImportError:
            pass

    return packages


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "message": "portal sampling service is running",
    }


@router.get("/system/info")
async def system_info():
    """Get interpreter and package information."""
    from . import __version__

    return {
        "version": __version__,
        "python": {
            "version": sys.version,
            "platform": sys.platform,
        },
        "system": {
            "os": platform.system(),
            "machine": platform.machine(),
        },
        "packages": _get_package_versions(),
    }
