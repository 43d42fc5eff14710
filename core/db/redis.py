"""Async Redis-backed alert store."""

from __future__ import annotations

import json
from typing import Any, Iterable, Sequence

from redis.asyncio import Redis

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


class RedisAlertStore:
    """Stores each piece of alert state as one JSON value under a prefixed key."""

    def __init__(self, url: str, prefix: str = "tickersqueak:"):
        self.url = url
        self.prefix = prefix
        self._client: Redis | None = None
        self.connected = False

    @property
    def client(self) -> Redis:
        if self._client is None:
            raise RuntimeError("Redis store not connected")
        return self._client

    async def connect(self) -> None:
        self._client = Redis.from_url(self.url, decode_responses=True)
        await self._client.ping()
        self.connected = True

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
        self.connected = False

    async def get_json(self, key: str) -> Any | None:
        payload = await self.client.get(self.prefix + key)
        if not payload:
            return None
        return json.loads(payload)

    async def set_json(self, key: str, value: Any) -> None:
        await self.client.set(self.prefix + key, json.dumps(value))

    async def delete(self, key: str) -> int:
        return await self.client.delete(self.prefix + key)

    async def load_visible_records(self) -> list[AlertRecord]:
        return records_from_payload(await self.get_json(VISIBLE_RECORDS_KEY) or [])

    async def save_visible_records(self, records: Sequence[AlertRecord]) -> None:
        await self.set_json(VISIBLE_RECORDS_KEY, records_to_payload(records))

    async def load_ignore_set(self) -> list[str]:
        return symbols_from_payload(await self.get_json(IGNORE_SET_KEY))

    async def save_ignore_set(self, symbols: Iterable[str]) -> None:
        await self.set_json(IGNORE_SET_KEY, list(symbols))

    async def load_snooze_set(self) -> list[str]:
        return symbols_from_payload(await self.get_json(SNOOZE_SET_KEY))

    async def save_snooze_set(self, symbols: Iterable[str]) -> None:
        await self.set_json(SNOOZE_SET_KEY, list(symbols))

    async def load_snooze_metadata(self) -> SnoozeMetadata | None:
        payload = await self.get_json(SNOOZE_METADATA_KEY)
        return SnoozeMetadata.from_dict(payload) if payload else None

    async def save_snooze_metadata(self, metadata: SnoozeMetadata) -> None:
        await self.set_json(SNOOZE_METADATA_KEY, metadata.to_dict())

    async def load_settings(self) -> dict[str, Any] | None:
        return await self.get_json(SETTINGS_KEY)

    async def save_settings(self, settings: dict[str, Any]) -> None:
        await self.set_json(SETTINGS_KEY, settings)
