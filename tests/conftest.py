"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for dex_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from dex_mock import MockDexClient  # noqa: E402

from dex_controller.config import Config  # noqa: E402


@pytest.fixture
def config() -> Config:
    """Provider configuration with no delete settle delay."""
    return Config(host="127.0.0.1:5557", timeout_seconds=3, delete_verify_delay_seconds=0)


@pytest.fixture
def dex() -> MockDexClient:
    """Empty in-memory Dex."""
    return MockDexClient()
