"""Test fixtures and configuration for runexpo tests.

Test Structure:
    tests/
    ├── conftest.py              # Shared fixtures
    ├── integration/
    │   ├── fake_tools.py        # Fake bun/node/npx scripts
    │   └── test_end_to_end.py   # Full sequence against the fakes
    └── test_*.py                # Unit tests (mocks, no real tools)

Running tests:
    pytest -v                       # Everything
    pytest -v -m "not integration"  # Skip tests that spawn fake tools
"""

import logging
import sys
from pathlib import Path

import pytest

# Add tests directory to path for imports
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from integration.fake_tools import FakeToolbox  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep the developer's RUNEXPO_* and OTLP settings out of the tests."""
    for name in (
        "RUNEXPO_NODE_DIR",
        "RUNEXPO_NODE_ARCHIVE",
        "RUNEXPO_BUN",
        "RUNEXPO_PORT",
        "OTEL_EXPORTER_OTLP_ENDPOINT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def toolbox(tmp_path) -> FakeToolbox:
    """Fake runtime and bun under tmp_path."""
    return FakeToolbox(tmp_path / "tools")


@pytest.fixture
def debug_logs(caplog):
    caplog.set_level(logging.DEBUG)
    return caplog
