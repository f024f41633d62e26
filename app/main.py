from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api import router
from app.stream import router as stream_router
from datastore.device_preferences import build_default_preferences
from logging_config import configure_logging
from services.notifier import build_default_dispatcher
from services.store import build_default_store


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    store = build_default_store()
    try:
        yield
    finally:
        store.shutdown()
        build_default_store.cache_clear()
        build_default_dispatcher.cache_clear()
        build_default_preferences.cache_clear()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Room Telemetry",
        description="Sensor reading ingestion with live streaming and threshold alerts.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(router)
    app.include_router(stream_router)
    return app

app = create_app()
