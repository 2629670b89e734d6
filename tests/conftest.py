"""Shared pytest fixtures for Examclock tests.

Provides a controllable clock so timer, sweep and scenario tests can move
time forward deterministically instead of sleeping.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock whose time only moves when told to.

    In manual mode (the default) ``sleep`` suspends until ``advance`` has
    moved time past the sleeper's deadline. In auto mode ``sleep`` moves
    time forward itself, by the requested amount plus ``overshoot`` to
    imitate late wake-ups.

    Attributes:
        sleeps: Every duration passed to ``sleep``, in call order.
    """

    def __init__(
        self,
        start: datetime = T0,
        auto_advance: bool = False,
        overshoot: float = 0.0,
    ) -> None:
        self._now = start
        self.auto_advance = auto_advance
        self.overshoot = overshoot
        self.sleeps: list[float] = []
        self._waiters: list[asyncio.Future[None]] = []

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        if self.auto_advance:
            self._now += timedelta(seconds=seconds + self.overshoot)
            await asyncio.sleep(0)
            return

        deadline = self._now + timedelta(seconds=seconds)
        while self._now < deadline:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            await waiter

    def set(self, instant: datetime) -> None:
        """Jump to ``instant`` and wake every sleeper to re-check."""
        self._now = instant
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    def advance(self, seconds: float = 0.0, **delta: float) -> None:
        """Move time forward, e.g. ``advance(1.5)`` or ``advance(minutes=10)``."""
        self.set(self._now + timedelta(seconds=seconds, **delta))

    async def settle(self, rounds: int = 25) -> None:
        """Let woken tasks run until they block again."""
        for _ in range(rounds):
            await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    """Manual clock starting at T0."""
    return FakeClock()


@pytest.fixture
def auto_clock() -> FakeClock:
    """Clock that advances by exactly what each sleep asks for."""
    return FakeClock(auto_advance=True)
