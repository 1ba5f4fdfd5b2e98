"""Pytest configuration and shared fixtures for the splicer test suite."""

import logging
import sys
from pathlib import Path

import pytest

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from splicer.session.config import EngineConfig, InterpreterConfig, SessionConfig


# Configure logging for tests
logging.basicConfig(level=logging.WARNING)


@pytest.fixture
def interpreter() -> InterpreterConfig:
    """Interpreter config pointing at the running Python."""
    return InterpreterConfig(command=sys.executable)


@pytest.fixture
def session_config() -> SessionConfig:
    """Short timeouts so failures surface quickly."""
    return SessionConfig(
        default_execute_timeout=10.0,
        ready_timeout=10.0,
        shutdown_timeout=2.0,
    )


@pytest.fixture
def engine_config(interpreter, session_config) -> EngineConfig:
    return EngineConfig(interpreter=interpreter, session=session_config)


@pytest.fixture
def test_code() -> dict[str, str]:
    """Collection of test code snippets."""
    return {
        "print": "print('hello')",
        "value": "21",
        "table": "[[1, 2], [3, 4]]",
        "hang": "import time\ntime.sleep(60)",
        "multiline": """
total = 0
for i in range(3):
    total += i
    print(i)
print(f"total={total}")
""",
    }


# Test markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Tests driving a real interpreter")
    config.addinivalue_line("markers", "slow: Tests that take >1s")
    config.addinivalue_line("markers", "regression: Regression tests for fixed bugs")


# Timeout configuration
def pytest_collection_modifyitems(config, items):
    """Modify test collection to add timeout based on markers."""
    for item in items:
        if item.get_closest_marker("slow"):
            item.add_marker(pytest.mark.timeout(30))
        elif item.get_closest_marker("unit"):
            item.add_marker(pytest.mark.timeout(5))
        else:
            item.add_marker(pytest.mark.timeout(20))
