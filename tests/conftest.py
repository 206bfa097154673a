"""Pytest Configuration and Shared Fixtures

This file is automatically loaded by pytest and makes all fixtures available to all tests.
"""
import pytest
import sys
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Import all fixture modules to register them
pytest_plugins = [
    "tests.fixtures.calendars",
]


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: Integration tests driving the calendar manager on a simulated clock"
    )
    config.addinivalue_line(
        "markers",
        "unit: Unit tests of a single component (fast)"
    )


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Auto-mark tests in unit/ directory
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        # Auto-mark tests in integration/ directory
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
