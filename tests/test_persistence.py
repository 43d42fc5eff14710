"""Tests for the ordered persistence writer and the store adapters."""

import asyncio
import json
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from apps.lifecycle.models import AlertRecord, Direction
from core.db.mongo import MongoAlertStore
from core.db.redis import RedisAlertStore
from core.monitoring.error_reporter import ErrorLevel, ErrorReporter
from core.persistence.port import (
    VISIBLE_RECORDS_KEY,
    InMemoryAlertStore,
    SnoozeMetadata,
    records_from_payload,
)
from core.persistence.writer import PersistenceWriter, load_or_default


class FakeRedis:
    def __init__(self):
        self.values = {}
        self.closed = False

    async def ping(self):
        return True

    async def get(self, key):
        return self.values.get(key)

    async def set(self, key, value):
        self.values[key] = value

    async def delete(self, key):
        return 1 if self.values.pop(key, None) is not None else 0

    async def aclose(self):
        self.closed = True


class FakeCollection:
    def __init__(self):
        self.docs = {}

    async def find_one(self, query):
        return self.docs.get(query["_id"])

    async def replace_one(self, query, document, upsert=False):
        assert upsert is True
        self.docs[query["_id"]] = dict(document)
        return SimpleNamespace(acknowledged=True)


def recording_write(log, label):
    async def write():
        log.append(label)

    return write


@pytest.mark.asyncio
async def test_latest_submission_per_key_wins():
    writes = []
    writer = PersistenceWriter(debounce_seconds=0)

    writer.submit("a", recording_write(writes, "a1"))
    writer.submit("b", recording_write(writes, "b1"))
    writer.submit("a", recording_write(writes, "a2"))

    assert await writer.flush() is True
    assert writes == ["b1", "a2"]
    assert writer.pending_keys == []


@pytest.mark.asyncio
async def test_background_task_debounces_and_flushes_on_stop():
    writes = []
    writer = PersistenceWriter(debounce_seconds=0.01)
    await writer.start()

    writer.submit("a", recording_write(writes, "a1"))
    await asyncio.sleep(0.1)
    assert writes == ["a1"]

    writer.submit("a", recording_write(writes, "a2"))
    await writer.stop()
    assert writes == ["a1", "a2"]


@pytest.mark.asyncio
async def test_failed_write_is_reported_and_retried_until_success():
    reporter = ErrorReporter()
    writer = PersistenceWriter(error_reporter=reporter, debounce_seconds=0)
    write = AsyncMock(side_effect=[ConnectionError("down"), None])

    writer.submit("ignore_set", write)
    assert await writer.flush() is False
    assert writer.pending_keys == ["ignore_set"]
    assert await writer.flush() is True

    assert write.await_count == 2
    (report,) = reporter.recent
    assert report.level == ErrorLevel.WARNING
    assert report.context == {"key": "ignore_set", "attempt": 1}


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    reporter = ErrorReporter()
    writer = PersistenceWriter(
        error_reporter=reporter, debounce_seconds=0, max_retries=2
    )
    write = AsyncMock(side_effect=ConnectionError("down"))

    writer.submit("snooze_set", write)
    await writer.flush()
    assert await writer.flush() is True

    assert write.await_count == 2
    assert [report.level for report in reporter.recent] == [
        ErrorLevel.WARNING,
        ErrorLevel.ERROR,
    ]


@pytest.mark.asyncio
async def test_failed_write_is_dropped_when_superseded():
    writes = []
    writer = PersistenceWriter(debounce_seconds=0)

    async def failing():
        writer.submit("a", recording_write(writes, "newer"))
        raise ConnectionError("down")

    writer.submit("a", failing)
    await writer.flush()
    assert writer.pending_keys == ["a"]
    await writer.flush()
    assert writes == ["newer"]


@pytest.mark.asyncio
async def test_load_or_default_reports_and_falls_back():
    reporter = ErrorReporter()
    read = AsyncMock(side_effect=ValueError("corrupt"))

    result = await load_or_default(read, [], key="visible_records", error_reporter=reporter)

    assert result == []
    assert reporter.recent[0].error_type == "ValueError"
    assert await load_or_default(
        AsyncMock(return_value=None), {}, key="settings", error_reporter=reporter
    ) == {}


def test_records_from_payload_skips_malformed_and_duplicates():
    records = records_from_payload(
        [
            {"symbol": "AAPL", "first_seen_at": "2024-03-04T15:00:00+00:00"},
            {"first_seen_at": "2024-03-04T15:00:00+00:00"},
            {"symbol": "MSFT", "first_seen_at": "not-a-date"},
            {"symbol": "AAPL", "is_starred": True},
            {"symbol": "NVDA", "direction": "sideways"},
        ]
    )
    assert [record.symbol for record in records] == ["AAPL", "NVDA"]
    assert records[1].direction == Direction.NONE


@pytest.mark.asyncio
async def test_in_memory_store_keeps_order():
    store = InMemoryAlertStore()
    first_seen = datetime(2024, 3, 4, 15, 0, tzinfo=UTC)
    records = [
        AlertRecord("NVDA", first_seen, is_unread=False, direction=Direction.BEARISH),
        AlertRecord("AAPL", first_seen, is_starred=True),
    ]

    await store.save_visible_records(records)
    assert await store.load_visible_records() == records
    assert await store.load_settings() is None


@pytest.mark.asyncio
async def test_redis_store_uses_prefixed_json_values():
    store = RedisAlertStore("redis://localhost:6379/0")
    fake = FakeRedis()
    store._client = fake  # noqa: SLF001
    first_seen = datetime(2024, 3, 4, 15, 0, tzinfo=UTC)

    await store.save_visible_records([AlertRecord("AAPL", first_seen)])
    await store.save_ignore_set(["TSLA", "GME"])
    await store.save_snooze_metadata(SnoozeMetadata(last_clear_at=first_seen))
    await store.save_settings({"is_muted": True})

    stored = json.loads(fake.values["tickersqueak:" + VISIBLE_RECORDS_KEY])
    assert stored[0]["symbol"] == "AAPL"
    assert (await store.load_visible_records())[0].first_seen_at == first_seen
    assert await store.load_ignore_set() == ["TSLA", "GME"]
    assert await store.load_snooze_set() == []
    assert (await store.load_snooze_metadata()).last_clear_at == first_seen
    assert await store.load_settings() == {"is_muted": True}

    await store.disconnect()
    assert fake.closed is True


@pytest.mark.asyncio
async def test_redis_store_raises_when_not_connected():
    store = RedisAlertStore("redis://localhost:6379/0")
    with pytest.raises(RuntimeError):
        await store.load_ignore_set()


@pytest.mark.asyncio
async def test_mongo_store_keeps_one_document_per_key():
    store = MongoAlertStore("mongodb://localhost:27017")
    collection = FakeCollection()
    store.client = {"tickersqueak": SimpleNamespace(state=collection)}

    await store.save_snooze_set(["NVDA"])
    await store.save_snooze_set(["NVDA", "AMD"])
    await store.save_settings({"hiding_timeout_seconds": 60})

    assert collection.docs["snooze_set"] == {"_id": "snooze_set", "value": ["NVDA", "AMD"]}
    assert await store.load_snooze_set() == ["NVDA", "AMD"]
    assert await store.load_ignore_set() == []
    assert await store.load_snooze_metadata() is None
    assert await store.load_settings() == {"hiding_timeout_seconds": 60}
