"""
Messages exchanged between the LTTB dispatcher and its worker thread.

Requests travel to the worker through a queue; results travel back to the
caller's event loop. Both carry the request id, which is the only link
between a submission and its result.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence


@dataclass(frozen=True)
class SampleRequest:
    """A dataset waiting to be downsampled by the worker."""

    request_id: str
    dataset: Sequence[Any]
    target_point_count: int
    value_key: str


@dataclass(frozen=True)
class SampleResult:
    """Outcome of one SampleRequest.

    ``sampled_dataset`` holds the original observation objects. When the
    sampler raised, ``error`` is set and ``sampled_dataset`` is empty.
    """

    request_id: str
    sampled_dataset: Sequence[Any]
    original_length: int
    sampled_length: int
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        """Summary for logs and status payloads (without the data)."""
        return {
            "request_id": self.request_id,
            "original_length": self.original_length,
            "sampled_length": self.sampled_length,
            "error": str(self.error) if self.error is not None else None,
        }
