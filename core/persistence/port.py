"""Persistence port for alert-core state and an in-memory implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Protocol, Sequence

from apps.lifecycle.models import AlertRecord

logger = logging.getLogger(__name__)

VISIBLE_RECORDS_KEY = "visible_records"
IGNORE_SET_KEY = "ignore_set"
SNOOZE_SET_KEY = "snooze_set"
SNOOZE_METADATA_KEY = "snooze_metadata"
SETTINGS_KEY = "settings"


@dataclass(frozen=True, slots=True)
class SnoozeMetadata:
    """When the snooze list was last cleared (manually or on schedule)."""

    last_clear_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"last_clear_at": self.last_clear_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SnoozeMetadata":
        return cls(last_clear_at=datetime.fromisoformat(str(data["last_clear_at"])))


class AlertStore(Protocol):
    """Narrow load/save interface used by the engine, registry and settings."""

    async def load_visible_records(self) -> list[AlertRecord]:  # pragma: no cover
        ...

    async def save_visible_records(
        self, records: Sequence[AlertRecord]
    ) -> None:  # pragma: no cover
        ...

    async def load_ignore_set(self) -> list[str]:  # pragma: no cover
        ...

    async def save_ignore_set(self, symbols: Iterable[str]) -> None:  # pragma: no cover
        ...

    async def load_snooze_set(self) -> list[str]:  # pragma: no cover
        ...

    async def save_snooze_set(self, symbols: Iterable[str]) -> None:  # pragma: no cover
        ...

    async def load_snooze_metadata(self) -> SnoozeMetadata | None:  # pragma: no cover
        ...

    async def save_snooze_metadata(
        self, metadata: SnoozeMetadata
    ) -> None:  # pragma: no cover
        ...

    async def load_settings(self) -> dict[str, Any] | None:  # pragma: no cover
        ...

    async def save_settings(self, settings: dict[str, Any]) -> None:  # pragma: no cover
        ...


def records_to_payload(records: Sequence[AlertRecord]) -> list[dict[str, Any]]:
    return [record.to_dict() for record in records]


def records_from_payload(payload: Iterable[dict[str, Any]]) -> list[AlertRecord]:
    """Decode stored records, dropping malformed or duplicate entries."""
    records: list[AlertRecord] = []
    seen: set[str] = set()
    for item in payload:
        try:
            record = AlertRecord.from_dict(item)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(f"Skipping malformed stored alert record {item!r}: {exc}")
            continue
        if record.symbol in seen:
            continue
        seen.add(record.symbol)
        records.append(record)
    return records


def symbols_from_payload(payload: Iterable[Any] | None) -> list[str]:
    if not payload:
        return []
    return list(dict.fromkeys(str(symbol) for symbol in payload))


class InMemoryAlertStore:
    """Process-local store; the default when no database is configured."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}

    async def load_visible_records(self) -> list[AlertRecord]:
        return records_from_payload(self.data.get(VISIBLE_RECORDS_KEY, []))

    async def save_visible_records(self, records: Sequence[AlertRecord]) -> None:
        self.data[VISIBLE_RECORDS_KEY] = records_to_payload(records)

    async def load_ignore_set(self) -> list[str]:
        return symbols_from_payload(self.data.get(IGNORE_SET_KEY))

    async def save_ignore_set(self, symbols: Iterable[str]) -> None:
        self.data[IGNORE_SET_KEY] = list(symbols)

    async def load_snooze_set(self) -> list[str]:
        return symbols_from_payload(self.data.get(SNOOZE_SET_KEY))

    async def save_snooze_set(self, symbols: Iterable[str]) -> None:
        self.data[SNOOZE_SET_KEY] = list(symbols)

    async def load_snooze_metadata(self) -> SnoozeMetadata | None:
        payload = self.data.get(SNOOZE_METADATA_KEY)
        return SnoozeMetadata.from_dict(payload) if payload else None

    async def save_snooze_metadata(self, metadata: SnoozeMetadata) -> None:
        self.data[SNOOZE_METADATA_KEY] = metadata.to_dict()

    async def load_settings(self) -> dict[str, Any] | None:
        payload = self.data.get(SETTINGS_KEY)
        return dict(payload) if payload else None

    async def save_settings(self, settings: dict[str, Any]) -> None:
        self.data[SETTINGS_KEY] = dict(settings)
