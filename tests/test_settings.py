"""Tests for application settings and the runtime settings manager."""

from datetime import time
from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from core.config_manager import SettingsManager
from core.monitoring.error_reporter import ErrorReporter
from core.persistence.port import SETTINGS_KEY, InMemoryAlertStore
from core.persistence.writer import PersistenceWriter
from core.settings.config import AppSettings, NotificationMethod, SoundType


def test_defaults():
    settings = AppSettings()
    assert settings.hiding_timeout_seconds == 3600
    assert settings.snooze_clear_time == time(18, 0)
    assert settings.snooze_clear_timezone == "America/New_York"
    assert settings.notification_methods == {
        NotificationMethod.IN_APP,
        NotificationMethod.DESKTOP,
    }
    assert settings.server_port == 4111
    assert settings.sound_for(False) == "Ping"
    assert settings.sound_for(True) == "Sosumi"


def test_from_env(monkeypatch):
    monkeypatch.setenv("TICKERSQUEAK_HIDING_TIMEOUT", "120")
    monkeypatch.setenv("TICKERSQUEAK_SNOOZE_CLEAR_TIME", "16:30")
    monkeypatch.setenv("TICKERSQUEAK_TIMEZONE", "Europe/London")
    monkeypatch.setenv("TICKERSQUEAK_NOTIFICATION_METHODS", "desktop")
    monkeypatch.setenv("TICKERSQUEAK_MUTED", "true")
    monkeypatch.setenv("TICKERSQUEAK_STORE", "redis")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")

    settings = AppSettings.from_env()

    assert settings.hiding_timeout_seconds == 120
    assert settings.snooze_clear_time == time(16, 30)
    assert settings.timezone.key == "Europe/London"
    assert settings.notification_methods == {NotificationMethod.DESKTOP}
    assert settings.is_muted is True
    assert settings.persistence_backend == "redis"
    assert settings.redis_url == "redis://cache:6379/1"


@pytest.mark.parametrize(
    "field,value",
    [
        ("snooze_clear_timezone", "Mars/Olympus_Mons"),
        ("hiding_timeout_seconds", -1),
        ("server_port", 70000),
        ("persistence_backend", "sqlite"),
    ],
)
def test_invalid_values_are_rejected(field, value):
    with pytest.raises(ValidationError):
        AppSettings(**{field: value})


def test_empty_sound_name_disables_sound():
    settings = AppSettings(sounds={SoundType.ALERT: ""})
    assert settings.sound_for(False) == ""
    assert settings.sound_for(True) == ""


def test_modify_notifies_listeners_with_old_and_new():
    manager = SettingsManager()
    changes = []
    manager.subscribe(lambda old, new: changes.append((old.is_muted, new.is_muted)))

    updated = manager.modify(is_muted=True)
    manager.modify(is_muted=True)

    assert updated.is_muted is True
    assert manager.current is updated
    assert changes == [(False, True)]


def test_modify_rejects_startup_only_and_invalid_fields():
    manager = SettingsManager()

    with pytest.raises(ValueError, match="server_port"):
        manager.modify(server_port=9000)
    with pytest.raises(ValidationError):
        manager.modify(hiding_timeout_seconds="soon")

    assert manager.current == AppSettings()


def test_user_settings_are_json_ready():
    payload = SettingsManager().user_settings()
    assert payload["snooze_clear_time"] == "18:00:00"
    assert sorted(payload["notification_methods"]) == ["desktop", "in_app"]
    assert "server_port" not in payload


@pytest.mark.asyncio
async def test_changes_are_persisted_and_restored():
    store = InMemoryAlertStore()
    writer = PersistenceWriter(debounce_seconds=0)
    manager = SettingsManager(store=store, writer=writer)

    manager.modify(hiding_timeout_seconds=90, snooze_clear_time="17:15")
    await writer.flush()
    assert store.data[SETTINGS_KEY]["hiding_timeout_seconds"] == 90

    restored = SettingsManager(AppSettings(server_port=5000), store=store)
    current = await restored.load(ErrorReporter())

    assert current.hiding_timeout_seconds == 90
    assert current.snooze_clear_time == time(17, 15)
    assert current.server_port == 5000


@pytest.mark.asyncio
async def test_invalid_stored_settings_are_reported_and_ignored():
    store = InMemoryAlertStore()
    store.load_settings = AsyncMock(return_value={"hiding_timeout_seconds": -5})
    reporter = ErrorReporter()

    current = await SettingsManager(store=store).load(reporter)

    assert current.hiding_timeout_seconds == 3600
    assert reporter.recent[0].source == "settings"
