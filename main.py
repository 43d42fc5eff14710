"""
TickerSqueak - local alert service for ticker watchlists
"""

import logging
from functools import partial
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from apps.ingress.payload import (
    DirectionRequest,
    ForegroundRequest,
    SymbolRequest,
    TickerPayload,
    normalize_symbol,
)
from apps.lifecycle.engine import PURGE_KEY_PREFIX, AlertLifecycleEngine
from apps.lifecycle.models import outcome_to_dict
from apps.notify.dispatcher import NotificationDispatcher
from apps.notify.sound import SoundGate
from apps.suppression.registry import SuppressionRegistry
from core.alerting.manager import (
    FeedChannel,
    GrafanaChannel,
    NotificationManager,
    OtelChannel,
)
from core.config_manager import SettingsManager
from core.db.mongo import MongoAlertStore
from core.db.redis import RedisAlertStore
from core.monitoring.error_reporter import ErrorReporter
from core.persistence.port import AlertStore, InMemoryAlertStore
from core.persistence.writer import PersistenceWriter
from core.scheduling.scheduler import KeyedScheduler
from core.settings.config import AppSettings
from otel_init import (
    attach_logging_handler,
    get_initialization_state,
    instrument_fastapi_app,
    setup_telemetry,
)

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="TickerSqueak",
    description="Alert lifecycle, suppression and notification service",
    version="1.0.0",
)
# Overridable before startup (tests, embedding).
app.state.initial_settings = None
app.state.store = None
app.state.engine = None
app.state.is_app_foreground = True
instrument_fastapi_app(app)


async def open_store(settings: AppSettings, reporter: ErrorReporter) -> AlertStore:
    """Connect the configured backend, falling back to memory if it is unreachable."""
    if settings.persistence_backend == "redis" and settings.redis_url:
        store: Any = RedisAlertStore(settings.redis_url)
    elif settings.persistence_backend == "mongo" and settings.mongo_url:
        store = MongoAlertStore(settings.mongo_url)
    else:
        return InMemoryAlertStore()

    try:
        await store.connect()
    except Exception as exc:
        reporter.report(
            exc,
            source="persistence",
            context={"backend": settings.persistence_backend},
        )
        logger.warning("Persistence backend unavailable; using in-memory store")
        return InMemoryAlertStore()
    logger.info(f"Connected {settings.persistence_backend} alert store")
    return store


def apply_settings(
    engine: AlertLifecycleEngine,
    registry: SuppressionRegistry,
    sound_gate: SoundGate,
    old: AppSettings,
    new: AppSettings,
) -> None:
    engine.hiding_timeout_seconds = new.hiding_timeout_seconds
    sound_gate.cooldown_seconds = new.sound_cooldown_seconds
    if (old.snooze_clear_time, old.snooze_clear_timezone) != (
        new.snooze_clear_time,
        new.snooze_clear_timezone,
    ):
        registry.update_clear_time(new.snooze_clear_time, new.snooze_clear_timezone)


@app.on_event("startup")
async def startup_event():
    """Run on startup."""
    setup_telemetry(service_name="tickersqueak")
    attach_logging_handler()

    settings = app.state.initial_settings or AppSettings.from_env()
    metrics_registry = CollectorRegistry()
    reporter = ErrorReporter(registry=metrics_registry)
    store = app.state.store or await open_store(settings, reporter)
    writer = PersistenceWriter(
        error_reporter=reporter,
        debounce_seconds=settings.persistence_debounce_seconds,
        max_retries=settings.persistence_max_retries,
    )
    settings_manager = SettingsManager(settings, store=store, writer=writer)
    current = await settings_manager.load(reporter)

    scheduler = KeyedScheduler()
    registry = await SuppressionRegistry.from_store(
        store,
        scheduler=scheduler,
        error_reporter=reporter,
        writer=writer,
        clear_time=current.snooze_clear_time,
        timezone=current.snooze_clear_timezone,
    )
    engine = await AlertLifecycleEngine.from_store(
        store,
        registry=registry,
        scheduler=scheduler,
        error_reporter=reporter,
        writer=writer,
        hiding_timeout_seconds=current.hiding_timeout_seconds,
    )

    feed = FeedChannel()
    sound_gate = SoundGate(cooldown_seconds=current.sound_cooldown_seconds)
    dispatcher = NotificationDispatcher(
        settings=settings_manager,
        manager=NotificationManager(
            [OtelChannel(), GrafanaChannel(registry=metrics_registry), feed]
        ),
        sound_gate=sound_gate,
        foreground_probe=lambda: app.state.is_app_foreground,
        error_reporter=reporter,
    )
    engine.subscribe(dispatcher.submit)
    settings_manager.subscribe(partial(apply_settings, engine, registry, sound_gate))

    await writer.start()
    await dispatcher.start()

    app.state.metrics_registry = metrics_registry
    app.state.error_reporter = reporter
    app.state.store = store
    app.state.writer = writer
    app.state.settings_manager = settings_manager
    app.state.scheduler = scheduler
    app.state.registry = registry
    app.state.engine = engine
    app.state.feed = feed
    app.state.dispatcher = dispatcher

    logger.info(
        f"TickerSqueak service started with {len(engine.visible_records)} alert(s), "
        f"{len(registry.ignored_symbols)} ignored, {len(registry.snoozed_symbols)} snoozed"
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Stop delivery, cancel timers and flush pending writes."""
    if app.state.engine is None:
        return
    await app.state.dispatcher.stop()
    app.state.registry.close()
    app.state.scheduler.cancel_all()
    await app.state.writer.stop()
    if isinstance(app.state.store, (RedisAlertStore, MongoAlertStore)):
        await app.state.store.disconnect()
    app.state.engine = None


def error_response(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    _ = request
    return error_response("; ".join(str(e.get("msg")) for e in exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    _ = request
    return error_response(str(exc.detail), status_code=exc.status_code)


def path_symbol(raw: str) -> str:
    try:
        return normalize_symbol(raw)
    except ValueError as exc:
        raise StarletteHTTPException(status_code=400, detail=str(exc)) from exc


def payload_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if any(error["type"] == "json_invalid" for error in errors):
        return "Invalid JSON format"
    return "; ".join(str(error["msg"]) for error in errors)


# Ingress


@app.post("/notify")
async def notify(request: Request):
    """Accept one alert from an external source."""
    body = await request.body()
    try:
        payload = TickerPayload.model_validate_json(body)
    except ValidationError as exc:
        message = payload_error(exc)
        logger.warning(f"Rejected alert payload: {message}")
        return error_response(message)

    outcome = app.state.engine.handle(payload.to_event())
    return {"status": "OK", "outcome": outcome_to_dict(outcome)}


# Alerts


@app.get("/alerts")
async def list_alerts():
    return {"alerts": [record.to_dict() for record in app.state.engine.visible_records]}


@app.get("/alerts/hidden")
async def list_hidden():
    scheduler = app.state.scheduler
    return {
        "hidden": [
            {
                "symbol": symbol,
                "remaining_seconds": scheduler.remaining(PURGE_KEY_PREFIX + symbol),
            }
            for symbol in app.state.engine.hidden_symbols
        ]
    }


@app.post("/alerts/{symbol}/hide")
async def hide_alert(symbol: str):
    app.state.engine.hide(path_symbol(symbol))
    return {"status": "OK"}


@app.post("/alerts/{symbol}/reveal")
async def reveal_alert(symbol: str):
    app.state.engine.reveal(path_symbol(symbol))
    return {"status": "OK"}


@app.post("/alerts/{symbol}/read")
async def mark_read(symbol: str):
    return {"status": "OK", "changed": app.state.engine.mark_read(path_symbol(symbol))}


@app.post("/alerts/{symbol}/toggle-unread")
async def toggle_unread(symbol: str):
    changed = app.state.engine.toggle_unread(path_symbol(symbol))
    return {"status": "OK", "changed": changed}


@app.post("/alerts/{symbol}/star")
async def mark_starred(symbol: str):
    changed = app.state.engine.mark_starred(path_symbol(symbol))
    return {"status": "OK", "changed": changed}


@app.post("/alerts/{symbol}/toggle-starred")
async def toggle_starred(symbol: str):
    changed = app.state.engine.toggle_starred(path_symbol(symbol))
    return {"status": "OK", "changed": changed}


@app.put("/alerts/{symbol}/direction")
async def set_direction(symbol: str, body: DirectionRequest):
    changed = app.state.engine.set_direction(path_symbol(symbol), body.direction)
    return {"status": "OK", "changed": changed}


@app.delete("/alerts/{symbol}")
async def dismiss_alert(symbol: str):
    app.state.engine.dismiss(path_symbol(symbol))
    return {"status": "OK"}


@app.delete("/alerts")
async def clear_alerts():
    app.state.engine.clear_all()
    return {"status": "OK"}


# Suppression lists


@app.get("/ignore")
async def list_ignored():
    return {"symbols": app.state.registry.ignored_symbols}


@app.post("/ignore")
async def add_ignore(body: SymbolRequest):
    app.state.registry.add_ignore(body.symbol)
    return {"status": "OK", "symbols": app.state.registry.ignored_symbols}


@app.delete("/ignore/{symbol}")
async def remove_ignore(symbol: str):
    app.state.registry.remove_ignore(path_symbol(symbol))
    return {"status": "OK", "symbols": app.state.registry.ignored_symbols}


@app.delete("/ignore")
async def clear_ignore():
    app.state.registry.clear_ignore()
    return {"status": "OK", "symbols": []}


def snooze_state() -> dict[str, Any]:
    registry = app.state.registry
    next_clear = registry.next_clear_at
    return {
        "symbols": registry.snoozed_symbols,
        "last_clear_at": registry.last_clear_at.isoformat(),
        "next_clear_at": next_clear.isoformat() if next_clear else None,
    }


@app.get("/snooze")
async def list_snoozed():
    return snooze_state()


@app.post("/snooze")
async def add_snooze(body: SymbolRequest):
    app.state.registry.set_snoozed(body.symbol, True)
    return {"status": "OK", **snooze_state()}


@app.delete("/snooze/{symbol}")
async def remove_snooze(symbol: str):
    app.state.registry.set_snoozed(path_symbol(symbol), False)
    return {"status": "OK", **snooze_state()}


@app.delete("/snooze")
async def clear_snooze():
    app.state.registry.clear_snooze()
    return {"status": "OK", **snooze_state()}


# Settings, notifications, errors


@app.get("/settings")
async def get_settings():
    return app.state.settings_manager.user_settings()


@app.patch("/settings")
async def patch_settings(changes: dict[str, Any]):
    try:
        app.state.settings_manager.modify(**changes)
    except ValueError as exc:
        return error_response(str(exc))
    return app.state.settings_manager.user_settings()


@app.get("/notifications")
async def list_notifications(since: int = 0):
    return {"notifications": [entry.to_dict() for entry in app.state.feed.since(since)]}


@app.post("/app/foreground")
async def set_foreground(body: ForegroundRequest):
    app.state.is_app_foreground = body.is_foreground
    return {"status": "OK", "is_app_foreground": body.is_foreground}


@app.get("/errors")
async def list_errors():
    return {"errors": [report.to_dict() for report in app.state.error_reporter.recent]}


@app.get("/metrics")
async def metrics():
    return Response(
        generate_latest(app.state.metrics_registry), media_type=CONTENT_TYPE_LATEST
    )


@app.get("/health/liveness")
async def liveness():
    """Liveness probe."""
    return {"status": "ok"}


@app.get("/health/readiness")
async def readiness():
    """Readiness probe."""
    if app.state.engine is None:
        return JSONResponse(status_code=503, content={"status": "starting"})
    return {
        "status": "ok",
        "store": type(app.state.store).__name__,
        "pending_writes": app.state.writer.pending_keys,
        "telemetry": get_initialization_state(),
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "tickersqueak", "version": app.version, "status": "operational"}


if __name__ == "__main__":
    import uvicorn

    server_settings = AppSettings.from_env()
    uvicorn.run(app, host=server_settings.server_host, port=server_settings.server_port)
