"""Precise delay primitive for lifecycle timers.

Event loop timers wake up late by a variable amount (selector granularity,
other callbacks running, load). To land within a few milliseconds of a
target instant, ``precise_sleep_until`` waits in two phases:

1. Coarse wait: sleep until ``fine_threshold`` before the target. Long
   waits are split into steps of at most ``max_coarse_step`` so the
   remaining delay is re-read from the wall clock regularly and clock
   adjustments are absorbed.
2. Fine poll: sleep ``poll_interval`` (0 simply yields to the loop) and
   re-check until the target has been reached.

The wait is anchored to the wall clock, the same clock the state machine
evaluates with, so a timer never fires before ``now >= target`` holds.
The clock is injected, which lets tests drive the primitive without real
sleeps.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current instant and of suspension."""

    def now(self) -> datetime:
        """Current wall-clock instant (timezone-aware UTC)."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for ``seconds``."""
        ...


class SystemClock:
    """Clock backed by the system wall clock and ``asyncio.sleep``."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


async def precise_sleep_until(
    target: datetime,
    clock: Clock,
    fine_threshold: float = 0.005,
    poll_interval: float = 0.0005,
    max_coarse_step: float = 60.0,
) -> float:
    """Suspend until ``clock.now() >= target``.

    Args:
        target: Instant to wake at (timezone-aware).
        clock: Clock to read and sleep with.
        fine_threshold: Seconds before the target at which the coarse
            wait hands over to fine polling.
        poll_interval: Seconds slept between fine polls.
        max_coarse_step: Longest single coarse sleep, in seconds.

    Returns:
        Lateness in seconds: how far past ``target`` the clock was when
        the wait ended. Zero or positive.
    """
    while True:
        remaining = (target - clock.now()).total_seconds()
        if remaining <= 0:
            return -remaining

        if remaining > fine_threshold:
            await clock.sleep(min(remaining - fine_threshold, max_coarse_step))
        else:
            await clock.sleep(min(poll_interval, remaining))
