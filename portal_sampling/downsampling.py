"""
Downsampling API routes for the sensor data portal.

Chart components post the series they fetched from the station API and get
back a reduced series that keeps the visual shape:
- POST /downsample: LTTB through the background dispatcher
- POST /downsample/multi: aligned LTTB over several station series
- POST /downsample/minmax: per-bucket minimum and maximum
- GET /downsample/status: dispatcher state
"""

import asyncio
from functools import partial
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from .config import SamplingSettings, load_settings
from .jobs import LttbDispatcher, SamplingTimeoutError
from .shared.decimation import lttb_multi_series_downsample, min_max_sample
from .shared.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

# Used when the app did not start a dispatcher; always samples inline
_inline_dispatcher = LttbDispatcher(autostart=False)


class DownsampleRequest(BaseModel):
    """Request model for LTTB downsampling of one series."""

    data: List[Dict[str, Any]]
    value_key: str = Field(..., min_length=1, description="Field to downsample")
    max_points: Optional[int] = Field(None, ge=1, description="Point budget (default from settings)")


class SeriesPayload(BaseModel):
    """One station series in a multi-series request."""

    database: str
    data: List[Dict[str, Any]]


class MultiSeriesRequest(BaseModel):
    """Request model for aligned downsampling of several series."""

    datasets: List[SeriesPayload]
    value_key: str = Field(..., min_length=1)
    max_points: Optional[int] = Field(None, ge=1)


class MinMaxRequest(BaseModel):
    """Request model for min/max bucket sampling."""

    data: List[Dict[str, Any]]
    value_key: str = Field(..., min_length=1)
    buckets: int = Field(..., ge=1, description="Number of buckets")


def _get_settings(request: Request) -> SamplingSettings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        settings = load_settings()
    return settings


def _get_dispatcher(request: Request) -> LttbDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        return _inline_dispatcher
    return dispatcher


@router.get("/downsample/status")
async def downsample_status(request: Request):
    """Get dispatcher state for the chart loading indicator."""
    dispatcher = _get_dispatcher(request)
    settings = _get_settings(request)
    return {
        "worker_alive": dispatcher.worker_alive,
        "is_processing": dispatcher.is_processing,
        "pending_requests": dispatcher.pending_count,
        "default_max_points": settings.default_max_points,
        "request_timeout": dispatcher.request_timeout,
    }


@router.post("/downsample")
async def downsample(request: Request, body: DownsampleRequest):
    """Downsample one series with LTTB on the background worker."""
    dispatcher = _get_dispatcher(request)
    max_points = body.max_points or _get_settings(request).default_max_points

    try:
        sampled = await dispatcher.sample_async(body.data, max_points, body.value_key)
    except SamplingTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e))

    return {
        "data": sampled,
        "original_length": len(body.data),
        "sampled_length": len(sampled),
    }


@router.post("/downsample/multi")
async def downsample_multi(request: Request, body: MultiSeriesRequest):
    """Downsample several station series onto shared timestamps."""
    max_points = body.max_points or _get_settings(request).default_max_points
    datasets = [item.model_dump() for item in body.datasets]

    # Reduction is CPU-bound; keep it off the event loop
    loop = asyncio.get_running_loop()
    sampled = await loop.run_in_executor(
        None, partial(lttb_multi_series_downsample, datasets, max_points, body.value_key)
    )

    return {
        "datasets": [
            {
                "database": item["database"],
                "data": item["data"],
                "sampled_length": len(item["data"]),
            }
            for item in sampled
        ],
    }


@router.post("/downsample/minmax")
async def downsample_minmax(body: MinMaxRequest):
    """Keep the extremes of each bucket."""
    loop = asyncio.get_running_loop()
    sampled = await loop.run_in_executor(
        None, partial(min_max_sample, body.data, body.buckets, body.value_key)
    )
    return {
        "data": sampled,
        "original_length": len(body.data),
        "sampled_length": len(sampled),
    }
