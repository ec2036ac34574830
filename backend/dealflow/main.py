"""dealflow -- FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dealflow import __version__
from dealflow.api.v1.router import api_v1_router
from dealflow.config import Settings, settings as default_settings
from dealflow.core.exceptions import ConfigError, NotFoundError, SubmissionRejected
from dealflow.core.logging import configure_logging
from dealflow.engine import Engine
from dealflow.schemas import ErrorDetail, ErrorResponse

logger = structlog.get_logger(__name__)


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(status.HTTP_404_NOT_FOUND, "not_found", exc.message)


async def submission_rejected_handler(request: Request, exc: SubmissionRejected) -> JSONResponse:
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "submission_rejected", "; ".join(exc.errors))


async def config_error_handler(request: Request, exc: ConfigError) -> JSONResponse:
    logger.error("config_error", error=exc.message)
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "config_error", exc.message)


def create_app(engine: Optional[Engine] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        engine: Prebuilt engine (tests); built from settings at startup otherwise
        settings: Process settings, defaults to the environment
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
        logger.info("starting_api", environment=settings.ENVIRONMENT, debug=settings.DEBUG)

        current = engine or Engine.from_settings(settings)
        app.state.engine = current

        # No background ticking under test
        start_scheduler = settings.START_SCHEDULER and settings.ENVIRONMENT != "test"
        await current.start(start_scheduler=start_scheduler)

        yield

        logger.info("shutting_down_api")
        await current.shutdown(cancel=True)

    app = FastAPI(
        title="dealflow API",
        description="Deal aggregation and scoring engine",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(SubmissionRejected, submission_rejected_handler)
    app.add_exception_handler(ConfigError, config_error_handler)

    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "dealflow API",
            "version": __version__,
            "docs": "/docs" if settings.DEBUG else None,
            "health": "/api/v1/health",
        }

    return app


app = create_app()
