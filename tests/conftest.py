"""Shared pytest configuration for timetable_lite tests."""

import logging
from typing import Any


def pytest_configure(config: Any) -> None:
    """Register test markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Tests against a real SQLite store")


def pytest_sessionstart(session: Any) -> None:
    """Keep aiosqlite connection chatter out of captured logs."""
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
