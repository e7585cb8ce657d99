"""
Root conftest.py for portal sampling tests.

This file contains shared fixtures and pytest configuration
that applies to all test modules.
"""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Ensure the project root is in the path
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


# ============================================================================
# Pytest Hooks
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow running",
    )
    config.addinivalue_line(
        "markers",
        "worker: mark test as exercising the background worker thread",
    )


def pytest_collection_modifyitems(config, items):
    """Mark dispatcher tests as worker tests."""
    for item in items:
        if "dispatcher" in str(item.path):
            item.add_marker(pytest.mark.worker)


# ============================================================================
# Shared Fixtures
# ============================================================================


def make_series(values, key="v", start=None, step_minutes=10):
    """Build station observations with ISO timestamps, one per value."""
    start = start or datetime(2024, 1, 1)
    return [
        {
            "timestamp": (start + timedelta(minutes=step_minutes * i)).isoformat(),
            key: value,
        }
        for i, value in enumerate(values)
    ]


@pytest.fixture
def series_factory():
    """Factory fixture returning ``make_series``."""
    return make_series


@pytest.fixture
def example_series():
    """The ten-point series used throughout the LTTB tests."""
    return make_series([0, 5, 3, 8, 2, 9, 1, 7, 4, 6])
