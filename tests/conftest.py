"""Shared fixtures.

Every test gets a configuration pinned to an explicit time zone so that
calendar-day truncation does not depend on the machine running the suite.
"""

import pytest

from ledger_export.config import Config
from tests.helpers.fake_api import TORONTO, StubResolver


@pytest.fixture
def config() -> Config:
    return Config(time_zone="America/Toronto")


@pytest.fixture
def zone():
    return TORONTO


@pytest.fixture
def resolver() -> StubResolver:
    return StubResolver()
