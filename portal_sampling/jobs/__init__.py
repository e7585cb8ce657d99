"""
Jobs package for background downsampling.

Provides the LTTB dispatcher, which runs the sampler on a worker thread
and routes results back to callers by request id.
"""

from .dispatcher import DEFAULT_REQUEST_TIMEOUT, LttbDispatcher, SamplingTimeoutError
from .messages import SampleRequest, SampleResult

__all__ = [
    "DEFAULT_REQUEST_TIMEOUT",
    "LttbDispatcher",
    "SamplingTimeoutError",
    "SampleRequest",
    "SampleResult",
]
