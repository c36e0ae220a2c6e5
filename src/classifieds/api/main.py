"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from classifieds.application.intake import IntakeFilter
from classifieds.application.record_updater import EntityRecordUpdater
from classifieds.application.use_cases.synchronize_attachments import AttachmentSynchronizer
from classifieds.domain.errors import ClassifiedsError
from classifieds.infrastructure import (
    S3AssetStore,
    SQLiteEntityRepository,
    Settings,
    TransientBuffer,
    get_settings,
    s3_store_from_settings,
)


def build_synchronizer(settings: Settings) -> AttachmentSynchronizer:
    """Wire the synchronizer with explicitly constructed collaborators."""
    store: S3AssetStore = s3_store_from_settings(settings)
    repository = SQLiteEntityRepository(db_path=settings.sqlite_db_path)
    return AttachmentSynchronizer(
        intake=IntakeFilter.from_settings(settings),
        store=store,
        updater=EntityRecordUpdater(repository),
        buffer_factory=lambda: TransientBuffer(settings.scratch_dir),
        remote_timeout=settings.remote_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    settings = app.state.settings
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    if getattr(app.state, "synchronizer", None) is None:
        app.state.synchronizer = build_synchronizer(settings)
        logger.info(f"Attachment store ready (bucket {settings.s3_bucket})")

    yield

    logger.info("Shutdown complete")


async def classifieds_error_handler(request: Request, exc: ClassifiedsError) -> JSONResponse:
    """Report one error classification per failed operation."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "fail", "error": type(exc).__name__, "message": exc.message},
    )


def create_app(
    settings: Settings | None = None,
    synchronizer: AttachmentSynchronizer | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Classifieds backend: user photos and post images",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.synchronizer = synchronizer

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ClassifiedsError, classifieds_error_handler)

    # Register routes
    from classifieds.api.routes import router

    app.include_router(router)

    return app
