"""Shared test fixtures for pytest.

We pin ENVIRONMENT=test before anything reads settings so no .env file is
loaded and the gate runs with its shipped defaults.
"""

import os
from collections.abc import Generator

import pytest


os.environ["ENVIRONMENT"] = "test"

from core.config import get_settings


@pytest.fixture(autouse=True)
def _fresh_settings() -> Generator[None, None, None]:
    """Drop cached settings around every test so monkeypatched env applies."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
