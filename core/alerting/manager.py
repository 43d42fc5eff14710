"""Notification effects, delivery channels and the fan-out manager."""

from __future__ import annotations

import itertools
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, ClassVar

from prometheus_client import CollectorRegistry, Counter

from otel_init import get_tracer


class EffectKind(StrEnum):
    """What the UI collaborator is asked to do."""

    TOAST = "toast"
    SYSTEM_NOTIFICATION = "system_notification"
    SOUND = "sound"


@dataclass(frozen=True, slots=True)
class ShowToast:
    """In-app toast for a surfaced symbol."""

    kind: ClassVar[EffectKind] = EffectKind.TOAST

    symbol: str
    is_high_priority: bool
    is_app_foreground: bool = True
    duration_seconds: float = 2.0

    @property
    def message(self) -> str:
        return f"Ticker Alert {self.symbol}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "symbol": self.symbol,
            "is_high_priority": self.is_high_priority,
            "is_app_foreground": self.is_app_foreground,
            "message": self.message,
            "style": "important" if self.is_high_priority else "info",
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True, slots=True)
class ShowSystemNotification:
    """Desktop notification for a surfaced symbol."""

    kind: ClassVar[EffectKind] = EffectKind.SYSTEM_NOTIFICATION

    symbol: str
    is_high_priority: bool
    is_app_foreground: bool = True

    @property
    def title(self) -> str:
        return "‼️ Ticker Alert ‼️" if self.is_high_priority else "Ticker Alert"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "symbol": self.symbol,
            "is_high_priority": self.is_high_priority,
            "is_app_foreground": self.is_app_foreground,
            "title": self.title,
            "body": self.symbol,
        }


@dataclass(frozen=True, slots=True)
class PlaySound:
    """Sound request that already passed the cooldown gate."""

    kind: ClassVar[EffectKind] = EffectKind.SOUND

    name: str
    symbol: str
    is_high_priority: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": str(self.kind),
            "symbol": self.symbol,
            "is_high_priority": self.is_high_priority,
            "name": self.name,
        }


NotificationEffect = ShowToast | ShowSystemNotification | PlaySound


class NotificationChannel:
    """Channel interface."""

    async def send(self, effect: NotificationEffect) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class OtelChannel(NotificationChannel):
    """OpenTelemetry span-based delivery trace."""

    def __init__(self, tracer_name: str = "core.alerting.manager"):
        self.tracer = get_tracer(tracer_name)

    async def send(self, effect: NotificationEffect) -> None:
        with self.tracer.start_as_current_span("tickersqueak.notification") as span:
            span.set_attribute("notification.kind", str(effect.kind))
            span.set_attribute("notification.symbol", effect.symbol)
            span.set_attribute("notification.high_priority", effect.is_high_priority)
            if isinstance(effect, PlaySound):
                span.set_attribute("notification.sound", effect.name)


class GrafanaChannel(NotificationChannel):
    """Prometheus counter of delivered notification effects."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.counter = Counter(
            "tickersqueak_notifications_total",
            "Notification effects delivered to the UI",
            ["kind", "priority"],
            registry=registry if registry is not None else CollectorRegistry(),
        )

    async def send(self, effect: NotificationEffect) -> None:
        self.counter.labels(
            kind=str(effect.kind),
            priority="high" if effect.is_high_priority else "normal",
        ).inc()


@dataclass(slots=True)
class FeedEntry:
    id: int
    effect: NotificationEffect
    delivered_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "delivered_at": self.delivered_at, **self.effect.to_dict()}


class FeedChannel(NotificationChannel):
    """Bounded in-process feed that the UI polls for new effects."""

    def __init__(self, max_entries: int = 200):
        self._entries: deque[FeedEntry] = deque(maxlen=max_entries)
        self._ids = itertools.count(1)

    async def send(self, effect: NotificationEffect) -> None:
        self._entries.append(FeedEntry(id=next(self._ids), effect=effect))

    def since(self, last_id: int = 0) -> list[FeedEntry]:
        return [entry for entry in self._entries if entry.id > last_id]


class NotificationManager:
    """Delivers effects to all configured channels."""

    def __init__(self, channels: list[NotificationChannel]):
        self.channels = channels

    async def dispatch(self, effect: NotificationEffect) -> None:
        for channel in self.channels:
            await channel.send(effect)
