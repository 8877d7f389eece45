"""Shared test configuration and lightweight fixtures for dashcal tests."""

import logging
import os
from collections.abc import Callable, Generator
from types import SimpleNamespace
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from dashcal.dash_logging import DASHCAL_MODULES, NOISY_LOGGERS


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object for fetcher and expander tests.

    Fields:
      - request_timeout: HTTP read timeout in seconds
      - max_retries: retry attempts for HTTP fetches
      - retry_backoff_factor: multiplier for retry backoff delays
    """
    return SimpleNamespace(
        request_timeout=5,
        max_retries=2,
        retry_backoff_factor=1.5,
    )


@pytest.fixture
def new_york() -> ZoneInfo:
    """Deterministic display timezone so UTC conversion does not depend on the host."""
    return ZoneInfo("America/New_York")


@pytest.fixture
def make_ics() -> Callable[..., str]:
    """Return a builder that wraps VEVENT bodies into a VCALENDAR document.

    Each positional argument is the list of property lines of one VEVENT.
    """

    def _build(*events: list[str]) -> str:
        lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//dashcal//tests//EN"]
        for props in events:
            lines.append("BEGIN:VEVENT")
            lines.extend(props)
            lines.append("END:VEVENT")
        lines.append("END:VCALENDAR")
        return "\r\n".join(lines) + "\r\n"

    return _build


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Isolate tests from DASHCAL_* environment variables.

    Values set by the code under test (e.g. .env loading writes straight into
    os.environ) are removed afterwards; pre-existing ones are restored by
    monkeypatch.
    """
    for key in list(os.environ):
        if key.startswith("DASHCAL_"):
            monkeypatch.delenv(key)
    yield
    for key in list(os.environ):
        if key.startswith("DASHCAL_"):
            del os.environ[key]


@pytest.fixture
def restore_logging() -> Generator[None, Any, None]:
    """Restore logger levels touched by logging configuration tests."""
    names = ["", *NOISY_LOGGERS, *DASHCAL_MODULES]
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


def pytest_configure(config: Any) -> None:
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Multi-module pipeline tests")
