"""Shared fixtures: a manually advanced clock that doubles as the timer backend."""

import itertools
from datetime import UTC, datetime, timedelta

import pytest

from apps.lifecycle.engine import AlertLifecycleEngine
from apps.suppression.registry import SuppressionRegistry
from core.scheduling.scheduler import KeyedScheduler

# Monday 10:00 in New York, before the DST switch.
START = datetime(2024, 3, 4, 15, 0, tzinfo=UTC)


class ManualHandle:
    def __init__(self, when: float, seq: int, callback, args):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class VirtualTime:
    """Clock and `call_later` backend driven by `advance()`."""

    def __init__(self, start: datetime = START):
        self.start = start
        self.elapsed = 0.0
        self.timers: list[ManualHandle] = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.elapsed)

    def monotonic(self) -> float:
        return self.elapsed

    def call_later(self, delay, callback, *args):
        handle = ManualHandle(self.elapsed + delay, next(self._seq), callback, args)
        self.timers.append(handle)
        return handle

    def pending(self) -> int:
        return sum(1 for handle in self.timers if not handle.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.elapsed + seconds
        while True:
            due = [h for h in self.timers if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self.timers.remove(handle)
            self.elapsed = max(self.elapsed, handle.when)
            handle.callback(*handle.args)
        self.elapsed = target


@pytest.fixture
def vt():
    return VirtualTime()


@pytest.fixture
def scheduler(vt):
    return KeyedScheduler(timer=vt, clock=vt)


@pytest.fixture
def registry(scheduler, vt):
    return SuppressionRegistry(scheduler=scheduler, last_clear_at=vt.now())


@pytest.fixture
def engine(registry, scheduler):
    return AlertLifecycleEngine(
        registry=registry,
        scheduler=scheduler,
        hiding_timeout_seconds=3600,
    )
