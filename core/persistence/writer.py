"""Ordered, debounced persistence writes with failure reporting."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from core.monitoring.error_reporter import ErrorLevel, ErrorReporter

logger = logging.getLogger(__name__)

T = TypeVar("T")
WriteFn = Callable[[], Awaitable[None]]


class PersistenceWriter:
    """
    Serializes store writes on a single worker task.

    Writes are submitted per key as zero-argument coroutine factories that
    capture an immutable snapshot. A newer submission for a key replaces an
    unwritten older one, and all writes run one after another, so an older
    snapshot can never land after a newer one. Failed writes are reported and
    retried unless a newer snapshot has been submitted in the meantime.
    """

    def __init__(
        self,
        *,
        error_reporter: ErrorReporter | None = None,
        debounce_seconds: float = 0.5,
        max_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
    ):
        self.error_reporter = error_reporter or ErrorReporter()
        self.debounce_seconds = debounce_seconds
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self._pending: dict[str, WriteFn] = {}
        self._attempts: dict[str, int] = {}
        self._wakeup = asyncio.Event()
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def pending_keys(self) -> list[str]:
        return list(self._pending)

    def submit(self, key: str, write: WriteFn) -> None:
        self._pending.pop(key, None)
        self._pending[key] = write
        self._attempts.pop(key, None)
        self._wakeup.set()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush()

    async def flush(self) -> bool:
        """Write everything pending now. Returns True when nothing is left."""
        async with self._lock:
            batch, self._pending = self._pending, {}
            try:
                while batch:
                    key = next(iter(batch))
                    write = batch.pop(key)
                    try:
                        ok = await self._execute(key, write)
                    except asyncio.CancelledError:
                        self._pending.setdefault(key, write)
                        raise
                    if not ok:
                        self._requeue(key, write)
            finally:
                for key, write in batch.items():
                    self._pending.setdefault(key, write)
            return not self._pending

    async def _run(self) -> None:
        while self._running:
            await self._wakeup.wait()
            self._wakeup.clear()
            await asyncio.sleep(self.debounce_seconds)
            if not await self.flush():
                await asyncio.sleep(self.retry_backoff_seconds)
                self._wakeup.set()

    async def _execute(self, key: str, write: WriteFn) -> bool:
        try:
            await write()
        except Exception as exc:
            attempt = self._attempts.get(key, 0) + 1
            self.error_reporter.report(
                exc,
                source="persistence",
                level=ErrorLevel.WARNING
                if attempt < self.max_retries
                else ErrorLevel.ERROR,
                context={"key": key, "attempt": attempt},
            )
            return False
        self._attempts.pop(key, None)
        logger.debug(f"Persisted '{key}'")
        return True

    def _requeue(self, key: str, write: WriteFn) -> None:
        if key in self._pending:
            # A newer snapshot was submitted while this one was being written.
            self._attempts.pop(key, None)
            return
        attempt = self._attempts.get(key, 0) + 1
        if attempt >= self.max_retries:
            self._attempts.pop(key, None)
            logger.error(
                f"Giving up on persisting '{key}' after {attempt} attempts; "
                "in-memory state remains authoritative"
            )
            return
        self._attempts[key] = attempt
        self._pending[key] = write


async def load_or_default(
    read: Callable[[], Awaitable[T]],
    default: T,
    *,
    key: str,
    error_reporter: ErrorReporter,
) -> T:
    """Run a store read, reporting failures and falling back to `default`."""
    try:
        value: Any = await read()
    except Exception as exc:
        error_reporter.report(exc, source="persistence", context={"key": key})
        return default
    return default if value is None else value
