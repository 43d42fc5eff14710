"""Alert lifecycle value types: events, records and outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeAlias

Symbol: TypeAlias = str


class Direction(StrEnum):
    """User-assigned bias for a visible alert."""

    NONE = "none"
    BULLISH = "bullish"
    BEARISH = "bearish"


class SuppressionReason(StrEnum):
    """Why an inbound alert did not surface."""

    IGNORED = "ignored"
    SNOOZED = "snoozed"
    COOLDOWN = "cooldown"
    DUPLICATE = "duplicate"


@dataclass(frozen=True, slots=True)
class AlertEvent:
    """Normalized inbound alert. Symbol is already trimmed and uppercased."""

    symbol: Symbol
    is_high_priority: bool = False


@dataclass(slots=True)
class AlertRecord:
    """One entry in the visible alert list."""

    symbol: Symbol
    first_seen_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_unread: bool = True
    is_starred: bool = False
    direction: Direction = Direction.NONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "first_seen_at": self.first_seen_at.isoformat(),
            "is_unread": self.is_unread,
            "is_starred": self.is_starred,
            "direction": str(self.direction),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlertRecord":
        first_seen = data.get("first_seen_at")
        if isinstance(first_seen, str):
            first_seen = datetime.fromisoformat(first_seen)
        if first_seen is None:
            first_seen = datetime.now(UTC)
        try:
            direction = Direction(data.get("direction", Direction.NONE))
        except ValueError:
            direction = Direction.NONE
        return cls(
            symbol=str(data["symbol"]),
            first_seen_at=first_seen,
            is_unread=bool(data.get("is_unread", True)),
            is_starred=bool(data.get("is_starred", False)),
            direction=direction,
        )


@dataclass(frozen=True, slots=True)
class Suppressed:
    """The alert was dropped; engine state is unchanged."""

    symbol: Symbol
    reason: SuppressionReason


@dataclass(frozen=True, slots=True)
class Surfaced:
    """The alert is visible at the front of the list."""

    record: AlertRecord
    was_new: bool
    is_high_priority: bool

    @property
    def symbol(self) -> Symbol:
        return self.record.symbol


Outcome: TypeAlias = Suppressed | Surfaced


def outcome_to_dict(outcome: Outcome) -> dict[str, Any]:
    if isinstance(outcome, Surfaced):
        return {
            "type": "surfaced",
            "symbol": outcome.symbol,
            "was_new": outcome.was_new,
            "is_high_priority": outcome.is_high_priority,
            "record": outcome.record.to_dict(),
        }
    return {
        "type": "suppressed",
        "symbol": outcome.symbol,
        "reason": str(outcome.reason),
    }
