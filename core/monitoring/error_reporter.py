"""Generic error-reporting collaborator for persistence and ingress failures."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Callable

from prometheus_client import CollectorRegistry, Counter

logger = logging.getLogger(__name__)


class ErrorLevel(StrEnum):
    WARNING = "warning"
    ERROR = "error"


@dataclass(slots=True)
class ErrorReport:
    """A single reported failure, kept for the UI collaborator."""

    source: str
    message: str
    level: ErrorLevel
    error_type: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    reported_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "message": self.message,
            "level": str(self.level),
            "error_type": self.error_type,
            "context": dict(self.context),
            "reported_at": self.reported_at,
        }


ErrorListener = Callable[[ErrorReport], None]


class ErrorReporter:
    """Logs, counts and retains recent failures. Never raises."""

    def __init__(
        self,
        *,
        max_reports: int = 100,
        registry: CollectorRegistry | None = None,
    ):
        self.counter = Counter(
            "tickersqueak_errors_total",
            "Errors reported by the alert core",
            ["source", "level"],
            registry=registry if registry is not None else CollectorRegistry(),
        )
        self._reports: deque[ErrorReport] = deque(maxlen=max_reports)
        self._listeners: list[ErrorListener] = []

    def subscribe(self, listener: ErrorListener) -> None:
        self._listeners.append(listener)

    @property
    def recent(self) -> list[ErrorReport]:
        return list(self._reports)

    def report(
        self,
        error: BaseException | str,
        *,
        source: str,
        level: ErrorLevel = ErrorLevel.ERROR,
        context: dict[str, Any] | None = None,
    ) -> ErrorReport:
        if isinstance(error, BaseException):
            message = str(error) or error.__class__.__name__
            error_type = error.__class__.__name__
        else:
            message = error
            error_type = None

        entry = ErrorReport(
            source=source,
            message=message,
            level=level,
            error_type=error_type,
            context=dict(context or {}),
        )
        self._reports.append(entry)
        self.counter.labels(source=source, level=str(level)).inc()

        if level == ErrorLevel.ERROR:
            logger.error(f"[{source}] {message}")
        else:
            logger.warning(f"[{source}] {message}")

        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception as exc:  # pragma: no cover - listener isolation
                logger.error(f"Error listener failed: {exc}")

        return entry
