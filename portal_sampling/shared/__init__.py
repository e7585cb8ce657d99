"""
Shared utilities for the portal sampling service.

Decimation routines and logging helpers used by the dispatcher and the
HTTP routes.
"""
from .decimation import (
    coerce_value,
    lttb_downsample,
    lttb_multi_series_downsample,
    min_max_sample,
)

__all__ = [
    "coerce_value",
    "lttb_downsample",
    "lttb_multi_series_downsample",
    "min_max_sample",
]
