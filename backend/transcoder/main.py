"""FastAPI application entry point."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from transcoder.core.config import settings
from transcoder.core.logging import log_info, setup_logging
from transcoder.core.metrics import get_content_type, get_metrics, set_app_info
from transcoder.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
)
from transcoder.modules.transcoding.factory import (
    build_coordinator,
    build_dispatcher,
    build_store,
)
from transcoder.modules.transcoding.router import presets_router, router as jobs_router
from transcoder.modules.transcoding.service import TranscodingService
from transcoder.modules.video.router import router as video_router
from transcoder.modules.video.storage import VideoStorage

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the store, engine, pool and service for the app's lifetime."""
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    os.makedirs(settings.OUTPUT_DIR, exist_ok=True)

    store = build_store(settings)
    if settings.JOB_STORE_BACKEND.lower() == "sql":
        from transcoder.modules.transcoding.repository import init_models

        await init_models(store.session_maker.kw["bind"])

    coordinator = build_coordinator(settings, store)
    dispatcher = build_dispatcher(settings, coordinator)

    app.state.job_store = store
    app.state.dispatcher = dispatcher
    service = TranscodingService(store, dispatcher)
    app.state.transcoding_service = service
    app.state.video_storage = VideoStorage(
        upload_dir=settings.UPLOAD_DIR,
        max_size_bytes=settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024,
        allowed_types=settings.ALLOWED_VIDEO_TYPES,
    )
    log_info(
        logger,
        "Transcoding service started",
        store=settings.JOB_STORE_BACKEND,
        execution=settings.EXECUTION_BACKEND,
        engine=settings.TRANSCODE_ENGINE,
    )
    # jobs queued by the previous process; Celery redelivers from its broker
    if (
        settings.JOB_STORE_BACKEND.lower() == "sql"
        and settings.EXECUTION_BACKEND.lower() == "local"
    ):
        await service.resume_pending()
    try:
        yield
    finally:
        await dispatcher.shutdown()
        await store.close()


setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=settings.LOG_JSON,
)
set_app_info(settings.VERSION, "development" if settings.DEBUG else "production")

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Upload videos and run FFmpeg transcoding jobs with progress tracking.",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    lifespan=lifespan,
)

if settings.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_middleware(MetricsMiddleware)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Liveness check."""
    return {"status": "healthy"}


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=get_metrics(), media_type=get_content_type())


app.include_router(video_router, prefix=settings.API_V1_PREFIX)
app.include_router(jobs_router, prefix=settings.API_V1_PREFIX)
app.include_router(presets_router, prefix=settings.API_V1_PREFIX)
