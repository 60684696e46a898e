"""Pytest configuration and shared fixtures for the flux engine tests."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import numpy as np
import pytest


# Add project root to path so imports work
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def pytest_configure(config: pytest.Config) -> None:
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s [%(levelname)s] %(message)s",
    )


@pytest.fixture
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture
def unit_box():
    """The unit cube [0, 1]³."""
    from core_engine.geometry import AABB

    return AABB(np.zeros(3), np.ones(3))
