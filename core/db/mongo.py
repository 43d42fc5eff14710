"""Async MongoDB-backed alert store."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from motor.motor_asyncio import AsyncIOMotorClient

from apps.lifecycle.models import AlertRecord
from core.persistence.port import (
    IGNORE_SET_KEY,
    SETTINGS_KEY,
    SNOOZE_METADATA_KEY,
    SNOOZE_SET_KEY,
    VISIBLE_RECORDS_KEY,
    SnoozeMetadata,
    records_from_payload,
    records_to_payload,
    symbols_from_payload,
)


class MongoAlertStore:
    """One document per state key in the `state` collection: `{_id: key, value}`."""

    def __init__(self, uri: str, db_name: str = "tickersqueak"):
        self.uri = uri
        self.db_name = db_name
        self.client: AsyncIOMotorClient | None = None
        self.connected = False

    @property
    def db(self):
        if self.client is None:
            raise RuntimeError("Mongo store not connected")
        return self.client[self.db_name]

    async def connect(self) -> None:
        self.client = AsyncIOMotorClient(self.uri)
        await self.client.admin.command("ping")
        self.connected = True

    async def disconnect(self) -> None:
        if self.client is not None:
            self.client.close()
        self.connected = False

    async def _get(self, key: str) -> Any | None:
        doc = await self.db.state.find_one({"_id": key})
        return doc.get("value") if doc else None

    async def _put(self, key: str, value: Any) -> bool:
        result = await self.db.state.replace_one(
            {"_id": key},
            {"_id": key, "value": value},
            upsert=True,
        )
        return result.acknowledged

    async def load_visible_records(self) -> list[AlertRecord]:
        return records_from_payload(await self._get(VISIBLE_RECORDS_KEY) or [])

    async def save_visible_records(self, records: Sequence[AlertRecord]) -> None:
        await self._put(VISIBLE_RECORDS_KEY, records_to_payload(records))

    async def load_ignore_set(self) -> list[str]:
        return symbols_from_payload(await self._get(IGNORE_SET_KEY))

    async def save_ignore_set(self, symbols: Iterable[str]) -> None:
        await self._put(IGNORE_SET_KEY, list(symbols))

    async def load_snooze_set(self) -> list[str]:
        return symbols_from_payload(await self._get(SNOOZE_SET_KEY))

    async def save_snooze_set(self, symbols: Iterable[str]) -> None:
        await self._put(SNOOZE_SET_KEY, list(symbols))

    async def load_snooze_metadata(self) -> SnoozeMetadata | None:
        payload = await self._get(SNOOZE_METADATA_KEY)
        return SnoozeMetadata.from_dict(payload) if payload else None

    async def save_snooze_metadata(self, metadata: SnoozeMetadata) -> None:
        await self._put(SNOOZE_METADATA_KEY, metadata.to_dict())

    async def load_settings(self) -> dict[str, Any] | None:
        return await self._get(SETTINGS_KEY)

    async def save_settings(self, settings: dict[str, Any]) -> None:
        await self._put(SETTINGS_KEY, settings)
