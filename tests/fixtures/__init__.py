"""Test Fixtures Package

Provides reusable test fixtures for all test modules.

Fixtures:
- calendars: calendar configurations, simulated clocks and ready-made calendars
"""

from tests.fixtures.calendars import (
    BASE_CONFIG,
    EventRecorder,
    make_config,
    ts,
)

__all__ = [
    "BASE_CONFIG",
    "EventRecorder",
    "make_config",
    "ts",
]
