"""
Time-series decimation utilities for sensor chart rendering.

Provides LTTB (Largest-Triangle-Three-Buckets) downsampling that preserves
the visual shape of station series (peaks, valleys) better than uniform
subsampling, plus two companion reducers used by the charts:

- ``lttb_multi_series_downsample``: aligned reduction of several station
  series so that compared curves share their sampled timestamps.
- ``min_max_sample``: per-bucket extreme-value preservation for quick
  overviews.

All reducers return the original observation objects (never copies) and
never raise on malformed values. LTTB counts missing, null, NaN and
non-numeric values as ``0``; min/max sampling counts null as ``0`` and
skips missing or non-numeric values.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

Observation = Mapping[str, Any]


def coerce_value(value: Any) -> Optional[float]:
    """Convert a raw observation value to a float.

    Returns ``None`` for values that cannot take part in the computation:
    ``None``, NaN, and anything that does not parse as a number. Infinite
    values are kept.
    """
    if value is None:
        return None
    if isinstance(value, (bool, int, float, np.integer, np.floating)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip()) if value.strip() else 0.0
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number


def _read_value(point: Observation, value_key: str) -> Optional[float]:
    try:
        raw = point[value_key]
    except (KeyError, IndexError, TypeError):
        return None
    return coerce_value(raw)


def _extract_series(data: Sequence[Observation], value_key: str):
    """Return (values, valid) arrays; invalid values are stored as 0."""
    n = len(data)
    values = np.zeros(n, dtype=np.float64)
    valid = np.zeros(n, dtype=bool)
    for idx, point in enumerate(data):
        number = _read_value(point, value_key)
        if number is not None:
            values[idx] = number
            valid[idx] = True
    return values, valid


def lttb_downsample(data: Sequence[Observation], threshold: int, value_key: str):
    """Downsample observations using the Largest-Triangle-Three-Buckets algorithm.

    The interior of the series is split into ``threshold - 2`` buckets. For
    each bucket, the point forming the largest triangle with the previously
    kept point and the average of the next bucket is kept. First and last
    points are always kept.

    Args:
        data: Observations in ascending timestamp order.
        threshold: Number of points to keep.
        value_key: Field holding the value to downsample.

    Returns:
        ``data`` itself when ``len(data) <= threshold`` or ``threshold < 3``,
        otherwise a new list of exactly ``threshold`` observations taken from
        ``data`` in their original order.
    """
    n = len(data)
    if n <= threshold or threshold < 3:
        return data

    values, valid = _extract_series(data, value_key)
    x = np.arange(n, dtype=np.float64)

    sampled = [data[0]]
    bucket_size = (n - 2) / (threshold - 2)
    a_idx = 0  # Previously selected point index

    for i in range(threshold - 2):
        # Next bucket, averaged into the third triangle vertex
        avg_start = math.floor((i + 1) * bucket_size) + 1
        avg_end = min(math.floor((i + 2) * bucket_size) + 1, n)

        avg_mask = valid[avg_start:avg_end]
        if avg_mask.any():
            count = int(avg_mask.sum())
            # Running sums, accumulated in index order
            avg_x = float(np.cumsum(x[avg_start:avg_end][avg_mask])[-1]) / count
            avg_y = float(np.cumsum(values[avg_start:avg_end][avg_mask])[-1]) / count
        else:
            avg_x = (avg_start + avg_end) / 2
            avg_y = 0.0

        # Current bucket, scanned for the largest triangle
        range_start = math.floor(i * bucket_size) + 1
        range_end = min(math.floor((i + 1) * bucket_size) + 1, n)
        if range_end <= range_start:
            range_end = range_start + 1

        y_a = values[a_idx]
        bucket_x = x[range_start:range_end]
        bucket_y = values[range_start:range_end]

        areas = np.abs(
            (a_idx - avg_x) * (bucket_y - y_a) - (a_idx - bucket_x) * (avg_y - y_a)
        ) * 0.5
        # NaN areas (inf - inf) never win
        areas = np.where(np.isnan(areas), -1.0, areas)

        max_idx = range_start + int(np.argmax(areas))
        sampled.append(data[max_idx])
        a_idx = max_idx

    sampled.append(data[n - 1])
    return sampled


def _timestamp_key(point: Observation) -> float:
    """Sort key for an observation timestamp (epoch seconds).

    Accepts ISO 8601 strings (a trailing ``Z`` is understood), datetimes and
    numeric epoch milliseconds. Unparseable timestamps sort last.
    """
    raw = point.get("timestamp") if isinstance(point, Mapping) else None
    if isinstance(raw, datetime):
        return raw.timestamp()
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw) / 1000.0
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text).timestamp()
        except ValueError:
            return math.inf
    return math.inf


def lttb_multi_series_downsample(
    datasets: List[Dict[str, Any]],
    threshold: int,
    value_key: str,
) -> List[Dict[str, Any]]:
    """Downsample several station series so their sampled points line up.

    The longest series is reduced with LTTB and its kept timestamps become
    the reference set. Every other series keeps the points at reference
    timestamps plus its own LTTB selection at half the budget, so that its
    peaks survive too.

    Args:
        datasets: Items of the form ``{"database": name, "data": [...]}``.
        threshold: Target number of points for the longest series.
        value_key: Field holding the value to downsample.

    Returns:
        New list of ``{"database", "data"}`` items in the input order, or
        ``datasets`` itself when nothing needs reducing.
    """
    if not datasets:
        return datasets

    reference = datasets[0]
    for item in datasets[1:]:
        if len(item["data"]) > len(reference["data"]):
            reference = item

    if not reference["data"] or len(reference["data"]) <= threshold:
        return datasets

    sampled_reference = lttb_downsample(reference["data"], threshold, value_key)
    reference_timestamps = {point.get("timestamp") for point in sampled_reference}
    own_budget = math.ceil(threshold / 2)

    result = []
    for item in datasets:
        if item is reference:
            result.append({"database": item["database"], "data": sampled_reference})
            continue

        by_timestamp = {point.get("timestamp"): point for point in item["data"]}
        own_sampled = lttb_downsample(item["data"], own_budget, value_key)
        keep = reference_timestamps | {point.get("timestamp") for point in own_sampled}

        points = [point for ts, point in by_timestamp.items() if ts in keep]
        points.sort(key=_timestamp_key)
        result.append({"database": item["database"], "data": points})

    return result


def _read_bucket_value(point: Observation, value_key: str) -> Optional[float]:
    """Like ``_read_value``, but an explicit null reads as 0."""
    try:
        raw = point[value_key]
    except (KeyError, IndexError, TypeError):
        return None
    if raw is None:
        return 0.0
    return coerce_value(raw)


def min_max_sample(data: Sequence[Observation], buckets: int, value_key: str):
    """Keep the minimum and maximum observation of each bucket.

    Cheaper than LTTB and guarantees that extremes survive. Each bucket
    contributes one or two observations, in timestamp order.

    Returns:
        ``data`` itself when ``len(data) <= buckets * 2``, otherwise a new
        list of observations taken from ``data``.
    """
    n = len(data)
    if buckets < 1 or n <= buckets * 2:
        return data

    bucket_size = math.ceil(n / buckets)
    result = []

    for start in range(0, n, bucket_size):
        bucket = data[start:start + bucket_size]
        min_point = max_point = bucket[0]
        min_val = math.inf
        max_val = -math.inf

        for point in bucket:
            number = _read_bucket_value(point, value_key)
            if number is None:
                continue
            if number < min_val:
                min_val = number
                min_point = point
            if number > max_val:
                max_val = number
                max_point = point

        if _timestamp_key(min_point) <= _timestamp_key(max_point):
            result.append(min_point)
            if min_point is not max_point:
                result.append(max_point)
        else:
            result.append(max_point)
            result.append(min_point)

    return result
