"""Shared fixtures for the devpulse tests"""

import pytest


class FakeClock:
    """Controllable millisecond clock"""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()
