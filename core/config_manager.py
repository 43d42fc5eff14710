"""Runtime settings manager with validation, change listeners and persistence."""

from __future__ import annotations

import logging
from typing import Any, Callable

from pydantic import ValidationError

from core.monitoring.error_reporter import ErrorReporter
from core.persistence.port import SETTINGS_KEY, AlertStore
from core.persistence.writer import PersistenceWriter, load_or_default
from core.settings.config import USER_SETTINGS_FIELDS, AppSettings

logger = logging.getLogger(__name__)

SettingsListener = Callable[[AppSettings, AppSettings], None]


class SettingsManager:
    """Holds the current `AppSettings` and applies partial user updates."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        store: AlertStore | None = None,
        writer: PersistenceWriter | None = None,
    ):
        self._settings = settings or AppSettings()
        self.store = store
        self.writer = writer
        self._listeners: list[SettingsListener] = []

    @property
    def current(self) -> AppSettings:
        return self._settings

    def subscribe(self, listener: SettingsListener) -> None:
        self._listeners.append(listener)

    def user_settings(self) -> dict[str, Any]:
        return self._settings.model_dump(mode="json", include=set(USER_SETTINGS_FIELDS))

    def modify(self, **changes: Any) -> AppSettings:
        """
        Apply a partial update of user-modifiable settings.

        Raises:
            ValueError: if a field is unknown or not user-modifiable.
            pydantic.ValidationError: if a value fails validation.
        """
        rejected = set(changes) - USER_SETTINGS_FIELDS
        if rejected:
            raise ValueError(f"settings not modifiable at runtime: {sorted(rejected)}")

        payload = {**self._settings.model_dump(), **changes}
        updated = AppSettings.model_validate(payload)
        if updated == self._settings:
            return self._settings

        previous, self._settings = self._settings, updated
        logger.info(f"Settings updated: {sorted(changes)}")
        self._persist()
        for listener in list(self._listeners):
            listener(previous, updated)
        return updated

    async def load(self, error_reporter: ErrorReporter) -> AppSettings:
        """Overlay persisted user settings on top of the environment defaults."""
        if self.store is None:
            return self._settings

        stored = await load_or_default(
            self.store.load_settings,
            {},
            key=SETTINGS_KEY,
            error_reporter=error_reporter,
        )
        overrides = {k: v for k, v in stored.items() if k in USER_SETTINGS_FIELDS}
        if not overrides:
            return self._settings

        try:
            self._settings = AppSettings.model_validate(
                {**self._settings.model_dump(), **overrides}
            )
        except ValidationError as exc:
            error_reporter.report(
                exc, source="settings", context={"key": SETTINGS_KEY}
            )
        return self._settings

    def _persist(self) -> None:
        if self.writer is None or self.store is None:
            return
        snapshot = self.user_settings()
        store = self.store
        self.writer.submit(SETTINGS_KEY, lambda: store.save_settings(snapshot))
