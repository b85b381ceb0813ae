"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for bigip_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from bigip_mock import MockBigIPStore  # noqa: E402

from ltm_operator.config import Config  # noqa: E402


@pytest.fixture
def store() -> MockBigIPStore:
    """Empty in-memory device."""
    return MockBigIPStore()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Valid configuration pointing at a temporary spec file."""
    return Config(
        host="bigip.example.com",
        username="admin",
        password="secret",
        max_delete_attempts=5,
        spec_file=tmp_path / "ltm.yaml",
        reconcile_interval_seconds=10,
    )
