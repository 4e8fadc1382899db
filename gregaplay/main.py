"""FastAPI application for the event video assembly service.

This is the web service entry point. It owns the process-wide collaborators:
settings, gateway and pipeline are built once in the lifespan and shared by
every request through ``app.state``.

Startup:
- Configure structured logging
- Build the gateway for the configured backend (fails fast on missing config)
- Probe the encoder with ``ffmpeg -version``

Shutdown:
- Close the gateway's HTTP client or database engine
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gregaplay.config import Settings, get_settings
from gregaplay.routes import process_video
from gregaplay.services.clip_gateway import ClipGateway, build_gateway
from gregaplay.services.pipeline_orchestrator import VideoAssemblyPipeline, build_pipeline
from gregaplay.utils.logging import configure_logging

log = structlog.get_logger()

SERVICE_NAME = "gregaplay-video-pipeline"


def create_app(
    settings: Settings | None = None,
    gateway: ClipGateway | None = None,
    pipeline: VideoAssemblyPipeline | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Configuration (defaults to environment settings)
        gateway: Prebuilt gateway; built from settings at startup when omitted
        pipeline: Prebuilt pipeline; wired from settings and gateway when omitted

    Returns:
        Configured FastAPI app
    """
    app_settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        owns_gateway = gateway is None
        active_gateway = gateway or build_gateway(app_settings)
        active_pipeline = pipeline or build_pipeline(app_settings, active_gateway)

        app.state.settings = app_settings
        app.state.gateway = active_gateway
        app.state.pipeline = active_pipeline
        app.state.ffmpeg_available = await active_pipeline.engine.check_available()

        log.info(
            "service_started",
            gateway_backend=app_settings.gateway_backend,
            ffmpeg_available=app.state.ffmpeg_available,
            auth_enforced=app_settings.api_token is not None,
        )

        yield  # Application runs here

        if owns_gateway:
            await active_gateway.close()
        log.info("service_stopped")

    app = FastAPI(
        title="Gregaplay - Event Video Assembly",
        description="Concatenates participant clips into an event's final video",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(app_settings.cors_allow_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=86400,
    )
    app.include_router(process_video.router)

    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check() -> JSONResponse:
        """Health check endpoint reporting encoder availability."""
        return JSONResponse(
            content={
                "status": "healthy",
                "service": SERVICE_NAME,
                "ffmpeg": bool(getattr(app.state, "ffmpeg_available", False)),
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    import os

    import uvicorn

    # Binding to 0.0.0.0 is intentional for container deployments
    uvicorn.run(
        "gregaplay.main:app",
        host="0.0.0.0",  # noqa: S104
        port=int(os.getenv("PORT", "4000")),
    )
