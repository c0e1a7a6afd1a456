"""FastAPI application entry point for the skill runner."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from skillrunner.api.deps import enforce_rate_limit
from skillrunner.api.routes import config, executions, health, webhook
from skillrunner.container import Container, build_container
from skillrunner.core.config import Settings, get_settings, log_config_summary
from skillrunner.core.exceptions import RateLimitError, SkillRunnerException, sanitize_error
from skillrunner.middleware.request_context import (
    CorrelationIdMiddleware,
    RequestTimingMiddleware,
)

logger = logging.getLogger(__name__)

APP_NAME = "skillrunner"
APP_VERSION = "1.0.0"


def _configure_logging(settings: Settings) -> None:
    """Set up logging based on LOG_FORMAT.

    json: Structured JSON via python-json-logger (for production).
    text: Human-readable format (for local development).
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicate output
    root_logger.handlers.clear()

    handler = logging.StreamHandler()

    if settings.LOG_FORMAT == "json":
        from pythonjsonlogger.json import JsonFormatter

        formatter = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "timestamp",
                "levelname": "level",
                "name": "service",
            },
            static_fields={"app": APP_NAME},
        )
        handler.setFormatter(formatter)
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.addHandler(handler)


def _error_response(request: Request, exc: Exception, status_code: int) -> JSONResponse:
    body = sanitize_error(exc)
    body["correlationId"] = getattr(request.state, "correlation_id", None)
    return JSONResponse(status_code=status_code, content=body)


def create_app(settings: Settings | None = None, container: Container | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Settings to use; defaults to get_settings().
        container: Pre-built components (tests); built in the lifespan otherwise.
    """
    settings = settings or get_settings()
    _configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Build components on startup, drain and release them on shutdown."""
        report = log_config_summary(settings)
        if not report.valid:
            logger.error("Configuration has %d error(s)", len(report.errors))
        app.state.container = container or build_container(settings)
        logger.info("Skill runner started", extra={"port": settings.PORT, "environment": settings.APP_ENV})
        try:
            yield
        finally:
            await app.state.container.shutdown()

    app = FastAPI(
        title="Skill Runner",
        description="Runs prompts through workflow classification and agent execution",
        version=APP_VERSION,
        lifespan=lifespan,
    )

    @app.exception_handler(SkillRunnerException)
    async def skillrunner_exception_handler(
        request: Request, exc: SkillRunnerException
    ) -> JSONResponse:
        logger.warning(
            "Request failed with %s",
            exc.code,
            extra={
                "code": exc.code,
                "status_code": exc.status_code,
                "correlation_id": getattr(request.state, "correlation_id", None),
                "path": request.url.path,
            },
        )
        return _error_response(request, exc, exc.status_code)

    @app.exception_handler(RateLimitError)
    async def rate_limit_exception_handler(request: Request, exc: RateLimitError) -> JSONResponse:
        """Reject with 429 and tell the client when to retry."""
        logger.warning(
            "Rate limit exceeded",
            extra={
                "code": exc.code,
                "status_code": exc.status_code,
                "details": exc.details,
                "path": request.url.path,
            },
        )
        response = _error_response(request, exc, exc.status_code)
        response.headers["Retry-After"] = str(exc.retry_after)
        return response

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        logger.warning("Request validation failed", extra={"path": request.url.path, "error_count": len(errors)})
        body = {
            "error": "ValidationError",
            "message": message,
            "code": "VALIDATION_ERROR",
            "correlationId": getattr(request.state, "correlation_id", None),
        }
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception", extra={"path": request.url.path})
        return _error_response(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR)

    # Middleware order: last added runs first
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=settings.cors_origins_list != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health and metrics stay unthrottled for monitors
    rate_limited = [Depends(enforce_rate_limit)]
    app.include_router(webhook.router, dependencies=rate_limited)
    app.include_router(config.router, dependencies=rate_limited)
    app.include_router(executions.router, dependencies=rate_limited)
    app.include_router(health.router)

    @app.get("/")
    async def root() -> dict[str, str]:
        return {"name": APP_NAME, "version": APP_VERSION}

    return app


app = create_app()
