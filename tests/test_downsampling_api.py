"""
Tests for the downsampling endpoints (portal_sampling/downsampling.py).

Verifies that:
- POST /api/downsample reduces through the app's dispatcher and matches
  the synchronous sampler
- max_points falls back to the configured default
- Timeouts from the dispatcher map to 504
- Request validation rejects bad bodies with 422
- Multi-series and min/max endpoints return the reduced series
- Multi-series and min/max reduction leave the event loop free
- Status and health endpoints report the dispatcher lifecycle
"""

import asyncio
import random
import sys
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from main import app
from portal_sampling.downsampling import (
    MinMaxRequest,
    MultiSeriesRequest,
    downsample_minmax,
    downsample_multi,
)
from portal_sampling.jobs import SamplingTimeoutError
from portal_sampling.shared.decimation import lttb_downsample, min_max_sample
from tests.conftest import make_series


@pytest.fixture
def client():
    """Client with startup/shutdown events (and the dispatcher) running."""
    with TestClient(app) as test_client:
        yield test_client


def _precipitation(n, seed=4):
    rng = random.Random(seed)
    return make_series([round(rng.uniform(0, 12), 2) for _ in range(n)], key="precipitation")


# ============= POST /api/downsample =============


class TestDownsample:
    """LTTB over HTTP."""

    def test_reduces_large_series(self, client):
        data = _precipitation(1200)
        response = client.post(
            "/api/downsample",
            json={"data": data, "value_key": "precipitation", "max_points": 150},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["original_length"] == 1200
        assert body["sampled_length"] == 150
        assert body["data"] == lttb_downsample(data, 150, "precipitation")

    def test_small_series_returned_unchanged(self, client):
        data = _precipitation(20)
        response = client.post(
            "/api/downsample",
            json={"data": data, "value_key": "precipitation", "max_points": 100},
        )

        assert response.status_code == 200
        assert response.json()["data"] == data

    def test_default_max_points_from_settings(self, client):
        data = _precipitation(40)
        with patch.object(app.state.settings, "default_max_points", 12):
            response = client.post(
                "/api/downsample",
                json={"data": data, "value_key": "precipitation"},
            )

        assert response.status_code == 200
        assert response.json()["sampled_length"] == 12

    def test_null_values_are_accepted(self, client):
        data = make_series([None if i % 7 == 0 else i % 13 for i in range(300)], key="snow_depth")
        response = client.post(
            "/api/downsample",
            json={"data": data, "value_key": "snow_depth", "max_points": 30},
        )

        assert response.status_code == 200
        assert response.json()["sampled_length"] == 30

    def test_timeout_maps_to_504(self, client):
        data = _precipitation(500)
        with patch.object(
            app.state.dispatcher,
            "sample_async",
            side_effect=SamplingTimeoutError("abc-123", 30.0),
        ):
            response = client.post(
                "/api/downsample",
                json={"data": data, "value_key": "precipitation", "max_points": 50},
            )

        assert response.status_code == 504
        assert "abc-123" in response.json()["detail"]

    @pytest.mark.parametrize("body", [
        {"value_key": "precipitation"},
        {"data": [], "value_key": ""},
        {"data": [], "value_key": "precipitation", "max_points": 0},
        {"data": "not a list", "value_key": "precipitation"},
    ])
    def test_invalid_body_rejected(self, client, body):
        response = client.post("/api/downsample", json=body)
        assert response.status_code == 422

    def test_works_without_startup(self):
        """Without lifecycle events, requests are sampled inline."""
        data = _precipitation(300)
        response = TestClient(app).post(
            "/api/downsample",
            json={"data": data, "value_key": "precipitation", "max_points": 25},
        )

        assert response.status_code == 200
        assert response.json()["data"] == lttb_downsample(data, 25, "precipitation")


# ============= Multi-series and min/max =============


class TestOtherReducers:
    """Multi-series and min/max endpoints."""

    def test_multi_series(self, client):
        summit = make_series([float(i % 17) for i in range(400)], key="air_temperature")
        valley = make_series([float(i % 11) for i in range(100)], key="air_temperature")

        response = client.post(
            "/api/downsample/multi",
            json={
                "datasets": [
                    {"database": "summit", "data": summit},
                    {"database": "valley", "data": valley},
                ],
                "value_key": "air_temperature",
                "max_points": 40,
            },
        )

        assert response.status_code == 200
        datasets = response.json()["datasets"]
        assert [d["database"] for d in datasets] == ["summit", "valley"]
        assert datasets[0]["sampled_length"] == 40
        assert datasets[0]["data"] == lttb_downsample(summit, 40, "air_temperature")
        assert datasets[1]["sampled_length"] == len(datasets[1]["data"])

    def test_minmax(self, client):
        data = _precipitation(90)
        response = client.post(
            "/api/downsample/minmax",
            json={"data": data, "value_key": "precipitation", "buckets": 9},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["data"] == min_max_sample(data, 9, "precipitation")
        assert body["original_length"] == 90

    def test_minmax_requires_buckets(self, client):
        response = client.post(
            "/api/downsample/minmax",
            json={"data": [], "value_key": "precipitation"},
        )
        assert response.status_code == 422


# ============= Event loop responsiveness =============


async def _run_beside_loop_task(handler_call, target):
    """Run a handler whose reducer waits for a task scheduled on the same loop.

    Returns whether the reducer saw the loop task run while it was working.
    """
    loop_ran = threading.Event()
    seen = []

    def reducer(*args, **kwargs):
        seen.append(loop_ran.wait(2))
        return []

    async def loop_task():
        await asyncio.sleep(0.01)
        loop_ran.set()

    with patch(target, side_effect=reducer):
        await asyncio.gather(handler_call(), loop_task())

    return seen


class TestReducersOffLoop:
    """Multi-series and min/max reduction must not freeze the event loop."""

    @pytest.mark.asyncio
    async def test_multi_series_runs_off_loop(self):
        body = MultiSeriesRequest(
            datasets=[{"database": "summit", "data": _precipitation(50)}],
            value_key="precipitation",
            max_points=10,
        )

        seen = await _run_beside_loop_task(
            lambda: downsample_multi(MagicMock(), body),
            "portal_sampling.downsampling.lttb_multi_series_downsample",
        )
        assert seen == [True]

    @pytest.mark.asyncio
    async def test_minmax_runs_off_loop(self):
        body = MinMaxRequest(data=_precipitation(50), value_key="precipitation", buckets=5)

        seen = await _run_beside_loop_task(
            lambda: downsample_minmax(body),
            "portal_sampling.downsampling.min_max_sample",
        )
        assert seen == [True]


# ============= Status and health =============


class TestStatus:
    """Dispatcher lifecycle as seen over HTTP."""

    def test_status_reports_running_worker(self, client):
        response = client.get("/api/downsample/status")

        assert response.status_code == 200
        status = response.json()
        assert status["worker_alive"] is True
        assert status["is_processing"] is False
        assert status["pending_requests"] == 0
        assert status["default_max_points"] == app.state.settings.default_max_points

    def test_dispatcher_closed_on_shutdown(self):
        with TestClient(app):
            dispatcher = app.state.dispatcher
            assert dispatcher.worker_alive

        assert not dispatcher.worker_alive
        assert app.state.dispatcher is None

    def test_shutdown_does_not_join_worker(self):
        with TestClient(app):
            dispatcher = app.state.dispatcher
            close = patch.object(dispatcher, "close", wraps=dispatcher.close)
            mock_close = close.start()

        close.stop()
        mock_close.assert_called_once_with(wait=False)
        assert not dispatcher.worker_alive

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_system_info(self, client):
        response = client.get("/api/system/info")
        assert response.status_code == 200
        assert "numpy" in response.json()["packages"]
