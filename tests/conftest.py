"""Shared fixtures: a controllable clock and a manually driven reference feed."""

import pytest

from updown.feeds.base import FeedUnavailableError, ReferencePriceFeed

NOW = 1767729600.0


class FakeClock:
    """Controllable unix clock."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ManualFeed(ReferencePriceFeed):
    """Reference feed driven directly by the test."""

    def __init__(self, clock, name="manual", connected=True, fail_connect=False):
        super().__init__(clock=clock)
        self.name = name
        self.connected = connected
        self.fail_connect = fail_connect
        self.connect_calls = 0

    def connect(self):
        self.connect_calls += 1
        if self.fail_connect:
            raise FeedUnavailableError(f"{self.name} unavailable")

    def disconnect(self):
        self.connected = False

    def is_connected(self):
        return self.connected

    def push(self, price):
        return self._record_price(price)

    def set_window(self, start, current):
        """Open a window at ``start`` and move the price to ``current``."""
        self.push(start)
        self.start_window()
        self.push(current)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_feed(clock):
    def factory(**kwargs):
        return ManualFeed(clock, **kwargs)

    return factory
