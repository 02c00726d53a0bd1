import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from avatar_studio.application import StudioServices, build_services
from avatar_studio.core.config import Settings, configure_logging, load_settings
from avatar_studio.core.errors import StudioError
from avatar_studio.infrastructure import PubSubTransport
from avatar_studio.routes import characters, folders, images, jobs, webhooks

log = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, transport: PubSubTransport | None = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    services: StudioServices = build_services(settings, transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.bus.connect()
        reaper_task = None
        if settings.job_reap_interval_seconds > 0:
            reaper_task = asyncio.create_task(services.reaper.run(settings.job_reap_interval_seconds))
        try:
            yield
        finally:
            if reaper_task is not None:
                reaper_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await reaper_task
            await services.bus.close()

    app = FastAPI(title="Avatar Studio API", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StudioError)
    async def studio_error_handler(request: Request, exc: StudioError) -> JSONResponse:
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    app.include_router(jobs.router, prefix="/api")
    app.include_router(webhooks.router, prefix="/api")
    app.include_router(images.router, prefix="/api")
    app.include_router(folders.router, prefix="/api")
    app.include_router(characters.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Avatar Studio API",
                "docs": "/docs",
                "realtime": services.bus.enabled,
            }
        )

    return app


app = create_app()
