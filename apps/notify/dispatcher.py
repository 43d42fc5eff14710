"""Turns lifecycle outcomes into UI notification effects."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from apps.lifecycle.models import Outcome, Surfaced
from apps.notify.sound import SoundGate
from core.alerting.manager import (
    NotificationEffect,
    NotificationManager,
    PlaySound,
    ShowSystemNotification,
    ShowToast,
)
from core.config_manager import SettingsManager
from core.monitoring.error_reporter import ErrorReporter
from core.settings.config import NotificationMethod

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DispatchContext:
    is_app_foreground: bool
    methods: frozenset[NotificationMethod]
    toast_duration_seconds: float = 2.0


def decide(
    outcome: Outcome, context: DispatchContext
) -> list[ShowToast | ShowSystemNotification]:
    """
    Pure mapping from an outcome to the effects it should produce.

    Suppressed outcomes produce nothing. A surfaced outcome produces one
    effect per enabled notification method; the methods are independent.
    """
    if not isinstance(outcome, Surfaced):
        return []

    effects: list[ShowToast | ShowSystemNotification] = []
    if NotificationMethod.IN_APP in context.methods:
        effects.append(
            ShowToast(
                symbol=outcome.symbol,
                is_high_priority=outcome.is_high_priority,
                is_app_foreground=context.is_app_foreground,
                duration_seconds=context.toast_duration_seconds,
            )
        )
    if NotificationMethod.DESKTOP in context.methods:
        effects.append(
            ShowSystemNotification(
                symbol=outcome.symbol,
                is_high_priority=outcome.is_high_priority,
                is_app_foreground=context.is_app_foreground,
            )
        )
    return effects


class NotificationDispatcher:
    """
    Delivers effects for surfaced alerts, in the order outcomes were produced.

    Each surfaced alert requests one sound through the shared `SoundGate`, so
    bursts of alerts produce a single sound.
    Outcomes submitted from synchronous engine listeners are queued and
    delivered by one worker task.
    """

    def __init__(
        self,
        *,
        settings: SettingsManager,
        manager: NotificationManager,
        sound_gate: SoundGate | None = None,
        foreground_probe: Callable[[], bool] = lambda: True,
        error_reporter: ErrorReporter | None = None,
    ):
        self.settings = settings
        self.manager = manager
        self.sound_gate = sound_gate or SoundGate(
            cooldown_seconds=settings.current.sound_cooldown_seconds
        )
        self.foreground_probe = foreground_probe
        self.error_reporter = error_reporter or ErrorReporter()
        self._queue: asyncio.Queue[Outcome] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    def context(self) -> DispatchContext:
        current = self.settings.current
        return DispatchContext(
            is_app_foreground=bool(self.foreground_probe()),
            methods=frozenset(current.notification_methods),
            toast_duration_seconds=current.toast_duration_seconds,
        )

    def effects_for(self, outcome: Outcome) -> list[NotificationEffect]:
        effects: list[NotificationEffect] = list(decide(outcome, self.context()))
        if not effects:
            return effects

        current = self.settings.current
        is_high_priority = effects[0].is_high_priority
        sound = current.sound_for(is_high_priority)
        if self.sound_gate.request(
            sound,
            muted=current.is_muted,
            cooldown_seconds=current.sound_cooldown_seconds,
        ):
            effects.append(
                PlaySound(
                    name=sound,
                    symbol=effects[0].symbol,
                    is_high_priority=is_high_priority,
                )
            )
        return effects

    async def dispatch(self, outcome: Outcome) -> list[NotificationEffect]:
        effects = self.effects_for(outcome)
        if effects:
            logger.debug(f"Delivering {len(effects)} effect(s) for {outcome.symbol}")
        for effect in effects:
            await self.manager.dispatch(effect)
        return effects

    # Queued delivery

    def submit(self, outcome: Outcome) -> None:
        if isinstance(outcome, Surfaced):
            self._queue.put_nowait(outcome)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def drain(self) -> None:
        """Wait until every submitted outcome has been delivered."""
        await self._queue.join()

    async def _run(self) -> None:
        while self._running:
            outcome = await self._queue.get()
            try:
                await self.dispatch(outcome)
            except Exception as exc:
                self.error_reporter.report(
                    exc,
                    source="notifications",
                    context={"symbol": getattr(outcome, "symbol", None)},
                )
            finally:
                self._queue.task_done()
