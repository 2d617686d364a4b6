import asyncio
import contextlib

from fastapi import FastAPI

from src.common.db import dispose_engine, prepare_schema
from src.common.logging import setup_logging
from src.common.metrics import JOB_DURATION, KAFKA_CONSUMER_LAG, setup_metrics
from src.common.settings import settings as common_settings
from src.common.telemetry import setup_otel

from . import deps, models, sync  # noqa: F401
from .api import router
from .kafka_loop import start_kafka_consumer

setup_logging(common_settings.log_level_value, service_name="navigation")

app = FastAPI(title="navigation")
setup_metrics(app, "navigation")
setup_otel(app, "navigation")

_consumer_task: asyncio.Task | None = None


@app.on_event("startup")
async def on_startup() -> None:
    global _consumer_task
    settings = deps.get_settings()
    if settings.persist_sessions:
        await prepare_schema()
    _consumer_task = await start_kafka_consumer(settings)
    KAFKA_CONSUMER_LAG.labels("navigation", settings.fixes_topic).set(0)
    JOB_DURATION.labels("navigation", "startup").observe(0)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    global _consumer_task
    if _consumer_task is not None:
        _consumer_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _consumer_task
        _consumer_task = None
    await deps.close_orchestrators()
    await sync.close_producer()
    await dispose_engine()


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
async def readyz() -> dict[str, str]:
    return {"status": "ready"}


app.include_router(router)
