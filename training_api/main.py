"""FastAPI application factory."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from training_api import __version__
from training_api.api.v1 import api_router
from training_api.config import settings
from training_api.db.session import SessionLocal
from training_api.services.push_delivery import PushConfig
from training_api.services.scheduler import build_notification_scheduler


tags_metadata: List[dict[str, str]] = [
    {"name": "notifications", "description": "Schedule and cancel workout push notifications."},
    {"name": "push-subscriptions", "description": "Register browser push endpoints."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the notification dispatch loop alongside the HTTP server."""

    scheduler = None
    if not settings.RUN_NOTIFICATION_SCHEDULER:
        logger.info("In-process notification scheduler disabled")
    elif not PushConfig.from_settings(settings).is_configured:
        logger.warning(
            "VAPID keys not found in environment variables. "
            "Scheduled notifications stay pending until they are configured."
        )
    else:
        scheduler = build_notification_scheduler(SessionLocal)
        scheduler.start()
    app.state.notification_scheduler = scheduler

    yield

    if scheduler is not None:
        await scheduler.stop()
        scheduler.dispatcher.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Backend for professors and students of a personal-training app.",
        version=__version__,
        openapi_tags=tags_metadata,
        docs_url=f"{settings.API_V1_STR}/docs",
        redoc_url=f"{settings.API_V1_STR}/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors(), "message": "Validation failed"},
        )

    @app.get("/health", tags=["health"])
    async def health(request: Request) -> dict:
        scheduler = getattr(request.app.state, "notification_scheduler", None)
        return {"status": "ok", "scheduler_running": bool(scheduler and scheduler.running)}

    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app


app = create_app()
