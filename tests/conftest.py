"""Shared fixtures: a controllable clock and an engine rooted in a temp dir."""

from datetime import datetime, timedelta, timezone

import pytest

from vigil.config import VigilConfig
from vigil.engine import SecurityEngine

# Wednesday 11 March 2026, 10:00 in Amsterdam (CET, UTC+1)
BUSINESS_HOURS = datetime(2026, 3, 11, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = BUSINESS_HOURS) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def set(self, moment: datetime) -> None:
        self.now = moment


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(tmp_path, clock) -> SecurityEngine:
    return SecurityEngine(VigilConfig.for_directory(tmp_path / "vigil"), clock=clock)
