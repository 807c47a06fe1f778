from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from common.config import Settings, get_settings
from common.db import create_db_engine

from .errors import Cancelled, ClientInputError, PersistenceError
from .infrastructure.persistence import ReadingStorage
from .logging_config import configure_logging
from .mqtt import MQTTReceiver
from .queries import ReadingQueryService
from .schemas import AverageReading, DeviceReading

logger = logging.getLogger(__name__)


def create_app(
    storage: Optional[ReadingStorage] = None,
    receiver: Optional[MQTTReceiver] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Composition root.

    Owns the single storage handle and MQTT receiver for the process and
    hands them to the query service and ingestion path explicitly. Either may
    be injected (tests); otherwise both are built from settings at startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)

        app_storage = storage or ReadingStorage(create_db_engine(settings))
        # No valid mode of operation without the table: let failures abort startup.
        try:
            app_storage.ensure_schema()
        except Exception:
            app_storage.close()
            raise

        app_receiver = receiver
        try:
            if app_receiver is None and settings.mqtt_enabled:
                app_receiver = MQTTReceiver.from_settings(app_storage, settings)
            if app_receiver is not None:
                await run_in_threadpool(app_receiver.start)

            app.state.storage = app_storage
            app.state.receiver = app_receiver
            app.state.queries = ReadingQueryService(app_storage)
            logger.info("[API] Started")
            yield
        finally:
            if app_receiver is not None:
                await run_in_threadpool(app_receiver.stop)
            app_storage.close()
            logger.info("[API] Stopped")

    app = FastAPI(title="Device Telemetry Service", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_allow_origins),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["Accept", "Authorization", "Content-Type", "X-CSRF-Token"],
        allow_credentials=False,
    )

    @app.exception_handler(ClientInputError)
    async def _client_input_error(request: Request, exc: ClientInputError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def _persistence_error(request: Request, exc: PersistenceError):
        logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc)
        if isinstance(exc, Cancelled):
            return JSONResponse(status_code=504, content={"detail": "DB timeout"})
        return JSONResponse(
            status_code=500,
            content={"detail": f"DB error: {type(exc.__cause__ or exc).__name__}"},
        )

    def _get_queries(request: Request) -> ReadingQueryService:
        return request.app.state.queries

    @app.get("/")
    def hello():
        return {"message": "Hello World!"}

    @app.get("/health")
    def health(request: Request):
        stats = request.app.state.storage.health()
        app_receiver = request.app.state.receiver
        if app_receiver is not None:
            stats["mqtt"] = app_receiver.health_check()
        status_code = 200 if stats.get("status") == "up" else 503
        return JSONResponse(status_code=status_code, content=stats)

    @app.get("/api/data/latest", response_model=List[DeviceReading])
    def get_latest_data(
        device_id: Optional[str] = None,
        queries: ReadingQueryService = Depends(_get_queries),
    ):
        return queries.latest(device_id)

    @app.get("/api/data/history", response_model=List[DeviceReading])
    def get_history_data(
        device_id: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
        queries: ReadingQueryService = Depends(_get_queries),
    ):
        return queries.history(device_id, start, end)

    @app.get("/api/data/average", response_model=AverageReading)
    def get_average_data(
        device_id: Optional[str] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
        queries: ReadingQueryService = Depends(_get_queries),
    ):
        return queries.average(device_id, start, end)

    return app


app = create_app()
