from datetime import datetime, timezone

import pytest


class FakeClock:
    """Deterministic wall clock whose sleep just advances time"""

    def __init__(self, start: float = 1_700_000_000.25):
        self.now = start
        self.sleeps = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def utc_now(self) -> datetime:
        return datetime.fromtimestamp(self.now, timezone.utc)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
