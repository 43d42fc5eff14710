"""Clock abstraction and a keyed, cancelable one-shot scheduler."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    """Source of wall-clock and monotonic time."""

    def now(self) -> datetime:  # pragma: no cover - interface
        ...

    def monotonic(self) -> float:  # pragma: no cover - interface
        ...


class SystemClock:
    """Timezone-aware UTC wall clock plus the process monotonic clock."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def monotonic(self) -> float:
        return time.monotonic()


class TimerHandle(Protocol):
    def cancel(self) -> None:  # pragma: no cover - interface
        ...


class TimerBackend(Protocol):
    """Anything with `call_later`, e.g. an asyncio event loop."""

    def call_later(
        self, delay: float, callback: Callable[..., Any], *args: Any
    ) -> TimerHandle:  # pragma: no cover - interface
        ...


@dataclass(slots=True)
class _Scheduled:
    handle: TimerHandle
    due: float
    token: object


class KeyedScheduler:
    """
    Runs a callback after a delay, with at most one pending timer per key.

    Scheduling a key that already has a pending timer cancels the old one.
    When a timer fires its key is removed before the callback runs, so each
    scheduled callback executes at most once. Cancelling an unknown,
    already-fired or already-cancelled key is a no-op.
    """

    def __init__(
        self,
        timer: TimerBackend | None = None,
        clock: Clock | None = None,
    ):
        self._timer = timer
        self.clock: Clock = clock or SystemClock()
        self._entries: dict[str, _Scheduled] = {}

    @property
    def timer(self) -> TimerBackend:
        if self._timer is None:
            self._timer = asyncio.get_running_loop()
        return self._timer

    def schedule(
        self, key: str, delay_seconds: float, callback: Callable[[], Any]
    ) -> None:
        self.cancel(key)
        delay = max(float(delay_seconds), 0.0)
        token = object()
        handle = self.timer.call_later(delay, self._fire, key, token, callback)
        self._entries[key] = _Scheduled(
            handle=handle,
            due=self.clock.monotonic() + delay,
            token=token,
        )
        logger.debug(f"Scheduled '{key}' in {delay:.3f}s")

    def cancel(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        entry.handle.cancel()
        logger.debug(f"Cancelled '{key}'")
        return True

    def cancel_all(self, prefix: str = "") -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            self.cancel(key)
        return len(keys)

    def is_scheduled(self, key: str) -> bool:
        return key in self._entries

    def remaining(self, key: str) -> float | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return max(entry.due - self.clock.monotonic(), 0.0)

    def keys(self, prefix: str = "") -> list[str]:
        return [key for key in self._entries if key.startswith(prefix)]

    def _fire(self, key: str, token: object, callback: Callable[[], Any]) -> None:
        entry = self._entries.get(key)
        if entry is None or entry.token is not token:
            # Superseded or cancelled after the backend already queued it.
            return
        del self._entries[key]
        try:
            callback()
        except Exception:
            logger.exception(f"Scheduled callback for '{key}' failed")
            raise
