"""Permanent ignore list and daily-cleared snooze list."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, time, timedelta, tzinfo
from typing import Callable, Iterable
from zoneinfo import ZoneInfo

from core.monitoring.error_reporter import ErrorReporter
from core.persistence.port import (
    IGNORE_SET_KEY,
    SNOOZE_METADATA_KEY,
    SNOOZE_SET_KEY,
    AlertStore,
    SnoozeMetadata,
)
from core.persistence.writer import PersistenceWriter, load_or_default
from core.scheduling.scheduler import KeyedScheduler

logger = logging.getLogger(__name__)

DAILY_CLEAR_KEY = "suppression:snooze-daily-clear"

RegistryListener = Callable[["SuppressionRegistry"], None]


def next_occurrence(clear_time: time, tz: tzinfo, after: datetime) -> datetime:
    """First instant strictly after `after` whose local time in `tz` is `clear_time`."""
    if after.tzinfo is None:
        after = after.replace(tzinfo=UTC)
    after = after.astimezone(UTC)
    local = after.astimezone(tz)
    # Compare in UTC: same-tzinfo comparisons ignore `fold` in the repeated DST hour.
    candidate = datetime.combine(local.date(), clear_time, tzinfo=tz).astimezone(UTC)
    if candidate <= after:
        candidate = datetime.combine(
            local.date() + timedelta(days=1), clear_time, tzinfo=tz
        ).astimezone(UTC)
    return candidate


class SuppressionRegistry:
    """
    Owns the ignore set, the snooze set and the snooze clear metadata.

    Membership queries are served from memory; every mutation is written
    through the persistence writer. On construction the snooze set is cleared
    immediately if a scheduled clear was missed since `last_clear_at`, then a
    one-shot timer is armed for the next clear time.
    """

    def __init__(
        self,
        *,
        scheduler: KeyedScheduler,
        clear_time: time = time(18, 0),
        timezone: tzinfo | str = "America/New_York",
        ignored: Iterable[str] = (),
        snoozed: Iterable[str] = (),
        last_clear_at: datetime | None = None,
        store: AlertStore | None = None,
        writer: PersistenceWriter | None = None,
    ):
        self.scheduler = scheduler
        self.clock = scheduler.clock
        self.store = store
        self.writer = writer
        self.clear_time = clear_time
        self.timezone: tzinfo = (
            ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        )
        self._ignored: dict[str, None] = dict.fromkeys(ignored)
        self._snoozed: dict[str, None] = dict.fromkeys(snoozed)
        self._listeners: list[RegistryListener] = []
        self._next_clear_at: datetime | None = None

        now = self.clock.now()
        if last_clear_at is None:
            self._last_clear_at = now
            self._persist_metadata()
        else:
            self._last_clear_at = last_clear_at

        if now >= next_occurrence(self.clear_time, self.timezone, self._last_clear_at):
            logger.info(
                "Snooze clear time passed since last run "
                f"(last cleared {self._last_clear_at.isoformat()}); clearing now"
            )
            self._clear_snoozes(now)

        self._schedule_next_clear(now)

    @classmethod
    async def from_store(
        cls,
        store: AlertStore,
        *,
        scheduler: KeyedScheduler,
        error_reporter: ErrorReporter,
        writer: PersistenceWriter | None = None,
        clear_time: time = time(18, 0),
        timezone: tzinfo | str = "America/New_York",
    ) -> "SuppressionRegistry":
        ignored = await load_or_default(
            store.load_ignore_set, [], key=IGNORE_SET_KEY, error_reporter=error_reporter
        )
        snoozed = await load_or_default(
            store.load_snooze_set, [], key=SNOOZE_SET_KEY, error_reporter=error_reporter
        )
        metadata = await load_or_default(
            store.load_snooze_metadata,
            None,
            key=SNOOZE_METADATA_KEY,
            error_reporter=error_reporter,
        )
        return cls(
            scheduler=scheduler,
            clear_time=clear_time,
            timezone=timezone,
            ignored=ignored,
            snoozed=snoozed,
            last_clear_at=metadata.last_clear_at if metadata else None,
            store=store,
            writer=writer,
        )

    # Observation

    def subscribe(self, listener: RegistryListener) -> None:
        self._listeners.append(listener)

    @property
    def ignored_symbols(self) -> list[str]:
        return list(self._ignored)

    @property
    def snoozed_symbols(self) -> list[str]:
        return list(self._snoozed)

    @property
    def last_clear_at(self) -> datetime:
        return self._last_clear_at

    @property
    def next_clear_at(self) -> datetime | None:
        return self._next_clear_at

    # Ignore list

    def is_ignored(self, symbol: str) -> bool:
        return symbol in self._ignored

    def add_ignore(self, symbol: str) -> None:
        if symbol in self._ignored:
            return
        self._ignored[symbol] = None
        self._persist_ignored()
        self._notify()

    def remove_ignore(self, symbol: str) -> None:
        if symbol not in self._ignored:
            return
        del self._ignored[symbol]
        self._persist_ignored()
        self._notify()

    def clear_ignore(self) -> None:
        if not self._ignored:
            return
        self._ignored.clear()
        self._persist_ignored()
        self._notify()

    # Snooze list

    def is_snoozed(self, symbol: str) -> bool:
        return symbol in self._snoozed

    def set_snoozed(self, symbol: str, snoozed: bool) -> None:
        if snoozed == (symbol in self._snoozed):
            return
        if snoozed:
            self._snoozed[symbol] = None
        else:
            del self._snoozed[symbol]
        self._persist_snoozed()
        self._notify()

    def clear_snooze(self) -> None:
        self._clear_snoozes(self.clock.now())

    def update_clear_time(
        self, clear_time: time, timezone: tzinfo | str | None = None
    ) -> None:
        self.clear_time = clear_time
        if timezone is not None:
            self.timezone = ZoneInfo(timezone) if isinstance(timezone, str) else timezone
        self._schedule_next_clear(self.clock.now())

    def close(self) -> None:
        self.scheduler.cancel(DAILY_CLEAR_KEY)
        self._next_clear_at = None

    # Internals

    def _clear_snoozes(self, now: datetime) -> None:
        had_snoozes = bool(self._snoozed)
        self._snoozed.clear()
        self._last_clear_at = now
        self._persist_snoozed()
        self._persist_metadata()
        logger.info(f"Snooze list cleared at {now.isoformat()}")
        if had_snoozes:
            self._notify()

    def _on_daily_clear(self) -> None:
        now = self.clock.now()
        self._clear_snoozes(now)
        # The timer may fire marginally early relative to the wall clock.
        base = max(now, self._next_clear_at) if self._next_clear_at else now
        self._schedule_next_clear(now, after=base)

    def _schedule_next_clear(self, now: datetime, after: datetime | None = None) -> None:
        next_clear = next_occurrence(self.clear_time, self.timezone, after or now)
        self._next_clear_at = next_clear
        delay = (next_clear - now).total_seconds()
        self.scheduler.schedule(DAILY_CLEAR_KEY, delay, self._on_daily_clear)
        logger.info(f"Next snooze clear scheduled for {next_clear.isoformat()}")

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def _persist_ignored(self) -> None:
        if self.writer is None or self.store is None:
            return
        snapshot = list(self._ignored)
        store = self.store
        self.writer.submit(IGNORE_SET_KEY, lambda: store.save_ignore_set(snapshot))

    def _persist_snoozed(self) -> None:
        if self.writer is None or self.store is None:
            return
        snapshot = list(self._snoozed)
        store = self.store
        self.writer.submit(SNOOZE_SET_KEY, lambda: store.save_snooze_set(snapshot))

    def _persist_metadata(self) -> None:
        if self.writer is None or self.store is None:
            return
        metadata = SnoozeMetadata(last_clear_at=self._last_clear_at)
        store = self.store
        self.writer.submit(
            SNOOZE_METADATA_KEY, lambda: store.save_snooze_metadata(metadata)
        )
