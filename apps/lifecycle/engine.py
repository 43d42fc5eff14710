"""Alert lifecycle state machine: surface, dedupe, hide with cooldown, forget."""

from __future__ import annotations

import logging
from dataclasses import replace
from functools import partial
from typing import Callable, Iterable

from apps.lifecycle.models import (
    AlertEvent,
    AlertRecord,
    Direction,
    Outcome,
    Suppressed,
    SuppressionReason,
    Surfaced,
)
from apps.suppression.registry import SuppressionRegistry
from core.monitoring.error_reporter import ErrorReporter
from core.persistence.port import VISIBLE_RECORDS_KEY, AlertStore
from core.persistence.writer import PersistenceWriter, load_or_default
from core.scheduling.scheduler import KeyedScheduler
from otel_init import get_meter, get_tracer

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)
meter = get_meter(__name__)

alerts_handled = meter.create_counter(
    "alerts_handled_total",
    description="Inbound alerts by lifecycle outcome",
    unit="1",
)

PURGE_KEY_PREFIX = "lifecycle:purge:"

OutcomeListener = Callable[[Outcome], None]
VisibleListener = Callable[[tuple[AlertRecord, ...]], None]


class AlertLifecycleEngine:
    """
    Decides, per symbol, whether an inbound alert becomes visible.

    A symbol is either unknown, known (visible or dismissed), or hidden with
    a pending purge. Rules are evaluated in a fixed order: ignored, snoozed
    (unless high priority), cooling down after a hide, duplicate of a known
    symbol (unless high priority, which resurfaces it), otherwise new.

    All methods run on the event loop thread and never raise for normalized
    input.
    """

    def __init__(
        self,
        *,
        registry: SuppressionRegistry,
        scheduler: KeyedScheduler,
        hiding_timeout_seconds: float = 3600.0,
        records: Iterable[AlertRecord] = (),
        store: AlertStore | None = None,
        writer: PersistenceWriter | None = None,
    ):
        self.registry = registry
        self.scheduler = scheduler
        self.clock = scheduler.clock
        self.hiding_timeout_seconds = hiding_timeout_seconds
        self.store = store
        self.writer = writer

        self._records: list[AlertRecord] = []
        for record in records:
            if self._index_of(record.symbol) is None:
                self._records.append(record)
        self._received: set[str] = {record.symbol for record in self._records}
        self._hidden: dict[str, None] = {}

        self._outcome_listeners: list[OutcomeListener] = []
        self._visible_listeners: list[VisibleListener] = []

        registry.subscribe(self._on_suppression_changed)

    @classmethod
    async def from_store(
        cls,
        store: AlertStore,
        *,
        registry: SuppressionRegistry,
        scheduler: KeyedScheduler,
        error_reporter: ErrorReporter,
        writer: PersistenceWriter | None = None,
        hiding_timeout_seconds: float = 3600.0,
    ) -> "AlertLifecycleEngine":
        records = await load_or_default(
            store.load_visible_records,
            [],
            key=VISIBLE_RECORDS_KEY,
            error_reporter=error_reporter,
        )
        logger.info(f"Restored {len(records)} visible alert(s)")
        return cls(
            registry=registry,
            scheduler=scheduler,
            hiding_timeout_seconds=hiding_timeout_seconds,
            records=records,
            store=store,
            writer=writer,
        )

    # Observation

    def subscribe(self, listener: OutcomeListener) -> None:
        self._outcome_listeners.append(listener)

    def subscribe_visible(self, listener: VisibleListener) -> None:
        self._visible_listeners.append(listener)

    @property
    def visible_records(self) -> tuple[AlertRecord, ...]:
        return tuple(replace(record) for record in self._records)

    @property
    def received_symbols(self) -> frozenset[str]:
        return frozenset(self._received)

    @property
    def hidden_symbols(self) -> list[str]:
        return list(self._hidden)

    def get_record(self, symbol: str) -> AlertRecord | None:
        index = self._index_of(symbol)
        return replace(self._records[index]) if index is not None else None

    def is_known(self, symbol: str) -> bool:
        return symbol in self._received

    def has_pending_purge(self, symbol: str) -> bool:
        return self.scheduler.is_scheduled(PURGE_KEY_PREFIX + symbol)

    # Inbound alerts

    def handle(self, event: AlertEvent) -> Outcome:
        with tracer.start_as_current_span("alert.handle") as span:
            span.set_attribute("alert.symbol", event.symbol)
            span.set_attribute("alert.high_priority", event.is_high_priority)
            outcome = self._evaluate(event)
            label = (
                "surfaced"
                if isinstance(outcome, Surfaced)
                else f"suppressed_{outcome.reason}"
            )
            span.set_attribute("alert.outcome", label)

        alerts_handled.add(1, {"outcome": label})
        logger.debug(f"{event.symbol} (high_priority={event.is_high_priority}) -> {label}")

        for listener in list(self._outcome_listeners):
            listener(outcome)
        return outcome

    def _evaluate(self, event: AlertEvent) -> Outcome:
        symbol = event.symbol

        if self.registry.is_ignored(symbol):
            return Suppressed(symbol, SuppressionReason.IGNORED)

        if self.registry.is_snoozed(symbol) and not event.is_high_priority:
            return Suppressed(symbol, SuppressionReason.SNOOZED)

        # A hidden symbol stays hidden until its cooldown ends, whatever the priority.
        if self.has_pending_purge(symbol):
            return Suppressed(symbol, SuppressionReason.COOLDOWN)

        if symbol in self._received:
            if not event.is_high_priority:
                return Suppressed(symbol, SuppressionReason.DUPLICATE)

            index = self._index_of(symbol)
            if index is not None:
                record = self._records.pop(index)
                record.is_unread = True
            else:
                record = AlertRecord(symbol=symbol, first_seen_at=self.clock.now())
            self._records.insert(0, record)
            self._visible_changed()
            self._unsnooze(symbol)
            return Surfaced(replace(record), was_new=False, is_high_priority=True)

        self._received.add(symbol)
        record = AlertRecord(symbol=symbol, first_seen_at=self.clock.now())
        self._records.insert(0, record)
        self._visible_changed()
        if event.is_high_priority:
            self._unsnooze(symbol)
        return Surfaced(
            replace(record), was_new=True, is_high_priority=event.is_high_priority
        )

    # List management

    def hide(self, symbol: str) -> None:
        """Remove from view and forget the symbol after the hiding timeout."""
        index = self._index_of(symbol)
        if index is not None:
            del self._records[index]
            self._visible_changed()

        self._hidden.pop(symbol, None)
        self._hidden[symbol] = None
        self.scheduler.schedule(
            PURGE_KEY_PREFIX + symbol,
            self.hiding_timeout_seconds,
            partial(self._purge, symbol),
        )
        logger.info(f"Hid {symbol} for {self.hiding_timeout_seconds:.0f}s")

    def reveal(self, symbol: str) -> None:
        """Cancel a pending purge. The symbol stays known and is not re-listed."""
        self.scheduler.cancel(PURGE_KEY_PREFIX + symbol)
        self._hidden.pop(symbol, None)

    def dismiss(self, symbol: str) -> None:
        """Remove the visible record only; the symbol stays known."""
        index = self._index_of(symbol)
        if index is None:
            return
        del self._records[index]
        self._visible_changed()

    def clear_all(self) -> None:
        cancelled = self.scheduler.cancel_all(PURGE_KEY_PREFIX)
        self._hidden.clear()
        self._received.clear()
        self._records.clear()
        self._visible_changed()
        logger.info(f"Cleared all alerts ({cancelled} pending purge(s) cancelled)")

    # Record state

    def mark_read(self, symbol: str) -> bool:
        return self._update(symbol, lambda record: setattr(record, "is_unread", False))

    def toggle_unread(self, symbol: str) -> bool:
        return self._update(
            symbol, lambda record: setattr(record, "is_unread", not record.is_unread)
        )

    def mark_starred(self, symbol: str) -> bool:
        return self._update(symbol, lambda record: setattr(record, "is_starred", True))

    def toggle_starred(self, symbol: str) -> bool:
        return self._update(
            symbol, lambda record: setattr(record, "is_starred", not record.is_starred)
        )

    def set_direction(self, symbol: str, direction: Direction) -> bool:
        return self._update(
            symbol, lambda record: setattr(record, "direction", Direction(direction))
        )

    # Internals

    def _index_of(self, symbol: str) -> int | None:
        for index, record in enumerate(self._records):
            if record.symbol == symbol:
                return index
        return None

    def _update(self, symbol: str, mutate: Callable[[AlertRecord], None]) -> bool:
        index = self._index_of(symbol)
        if index is None:
            return False
        mutate(self._records[index])
        self._visible_changed()
        return True

    def _unsnooze(self, symbol: str) -> None:
        if self.registry.is_snoozed(symbol):
            logger.info(f"High-priority alert for {symbol} cleared its snooze")
            self.registry.set_snoozed(symbol, False)

    def _purge(self, symbol: str) -> None:
        self._received.discard(symbol)
        self._hidden.pop(symbol, None)
        logger.info(f"Forgot hidden symbol {symbol} after cooldown")

    def _on_suppression_changed(self, registry: SuppressionRegistry) -> None:
        candidates = self._received | {record.symbol for record in self._records}
        suppressed = {
            symbol
            for symbol in candidates
            if registry.is_ignored(symbol) or registry.is_snoozed(symbol)
        }
        if not suppressed:
            return
        self._received -= suppressed
        remaining = [r for r in self._records if r.symbol not in suppressed]
        if len(remaining) != len(self._records):
            self._records = remaining
            self._visible_changed()

    def _visible_changed(self) -> None:
        snapshot = self.visible_records
        if self.writer is not None and self.store is not None:
            store = self.store
            self.writer.submit(
                VISIBLE_RECORDS_KEY, lambda: store.save_visible_records(snapshot)
            )
        for listener in list(self._visible_listeners):
            listener(snapshot)
