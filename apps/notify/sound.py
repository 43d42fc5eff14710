"""Process-wide sound cooldown."""

from __future__ import annotations

import logging
import time
from typing import Any

logger = logging.getLogger(__name__)


class SoundGate:
    """Allows at most one notification sound per cooldown window."""

    def __init__(self, cooldown_seconds: float = 2.0, clock: Any = time.monotonic):
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.last_played_at: float | None = None

    def request(
        self,
        sound_name: str,
        *,
        muted: bool = False,
        cooldown_seconds: float | None = None,
    ) -> bool:
        """Return True if `sound_name` may play now; the window restarts only then."""
        if muted or not sound_name:
            return False

        cooldown = self.cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        now = float(self.clock())
        if self.last_played_at is not None and now - self.last_played_at < cooldown:
            logger.debug(f"Sound '{sound_name}' dropped by cooldown")
            return False

        self.last_played_at = now
        return True
