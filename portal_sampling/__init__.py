"""
Sensor time-series sampling service for the environmental data portal.

This package provides:
- LTTB, multi-series LTTB and min/max reducers (shared/decimation.py)
- The background LTTB dispatcher (jobs/)
- Downsampling HTTP routes (downsampling.py)
- Health routes (system.py)
- Settings from the environment (config.py)
"""

from .config import SamplingSettings, load_settings
from .jobs import LttbDispatcher, SamplingTimeoutError
from .shared.decimation import lttb_downsample, lttb_multi_series_downsample, min_max_sample

__version__ = "1.0.0"

__all__ = [
    "LttbDispatcher",
    "SamplingSettings",
    "SamplingTimeoutError",
    "load_settings",
    "lttb_downsample",
    "lttb_multi_series_downsample",
    "min_max_sample",
]
