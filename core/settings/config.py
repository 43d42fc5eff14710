import os
from datetime import time
from enum import StrEnum
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pydantic
from pydantic import BaseModel, Field


class NotificationMethod(StrEnum):
    IN_APP = "in_app"
    DESKTOP = "desktop"


class SoundType(StrEnum):
    ALERT = "alert"
    HIGH_PRIORITY_ALERT = "high_priority_alert"


# Settings the user may change at runtime; these are persisted through the store.
USER_SETTINGS_FIELDS = frozenset(
    {
        "hiding_timeout_seconds",
        "snooze_clear_time",
        "snooze_clear_timezone",
        "notification_methods",
        "toast_duration_seconds",
        "is_muted",
        "sound_cooldown_seconds",
        "sounds",
    }
)


class AppSettings(BaseModel):
    hiding_timeout_seconds: float = Field(
        3600.0,
        ge=0.0,
        description="Cooldown before a hidden symbol is forgotten.",
    )
    snooze_clear_time: time = Field(
        default_factory=lambda: time(18, 0),
        description="Time of day at which the snooze list is cleared.",
    )
    snooze_clear_timezone: str = Field(
        "America/New_York",
        description="IANA timezone the snooze clear time is expressed in.",
    )
    notification_methods: set[NotificationMethod] = Field(
        default_factory=lambda: {NotificationMethod.IN_APP, NotificationMethod.DESKTOP},
    )
    toast_duration_seconds: float = Field(2.0, gt=0.0)
    is_muted: bool = False
    sound_cooldown_seconds: float = Field(
        2.0,
        ge=0.0,
        description="Minimum interval between two notification sounds.",
    )
    sounds: dict[SoundType, str] = Field(
        default_factory=lambda: {
            SoundType.ALERT: "Ping",
            SoundType.HIGH_PRIORITY_ALERT: "Sosumi",
        }
    )
    server_host: str = "127.0.0.1"
    server_port: int = Field(4111, ge=1, le=65535)
    persistence_backend: Literal["memory", "redis", "mongo"] = "memory"
    redis_url: Optional[str] = None
    mongo_url: Optional[str] = None
    persistence_debounce_seconds: float = Field(0.5, ge=0.0)
    persistence_max_retries: int = Field(3, ge=1)

    @pydantic.field_validator("snooze_clear_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.snooze_clear_timezone)

    def sound_for(self, is_high_priority: bool) -> str:
        sound_type = (
            SoundType.HIGH_PRIORITY_ALERT if is_high_priority else SoundType.ALERT
        )
        return self.sounds.get(sound_type, "")

    @classmethod
    def from_env(cls) -> "AppSettings":
        methods = os.getenv("TICKERSQUEAK_NOTIFICATION_METHODS", "in_app,desktop")
        return cls(
            hiding_timeout_seconds=float(
                os.getenv("TICKERSQUEAK_HIDING_TIMEOUT", "3600")
            ),
            snooze_clear_time=os.getenv("TICKERSQUEAK_SNOOZE_CLEAR_TIME", "18:00"),
            snooze_clear_timezone=os.getenv(
                "TICKERSQUEAK_TIMEZONE", "America/New_York"
            ),
            notification_methods={m.strip() for m in methods.split(",") if m.strip()},
            is_muted=os.getenv("TICKERSQUEAK_MUTED", "false").lower() == "true",
            server_host=os.getenv("TICKERSQUEAK_HOST", "127.0.0.1"),
            server_port=int(os.getenv("TICKERSQUEAK_PORT", "4111")),
            persistence_backend=os.getenv("TICKERSQUEAK_STORE", "memory"),
            redis_url=os.getenv("REDIS_URL"),
            mongo_url=os.getenv("MONGO_URL"),
        )


__all__ = ["AppSettings", "NotificationMethod", "SoundType", "USER_SETTINGS_FIELDS"]
