"""
Haunted House - effects service

Fires timed smart-home effects for the Halloween video page through
Alexa (virtual contact sensors), IFTTT and local Kasa/Tapo lights.
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from haunted import __version__
from haunted.config import Settings
from haunted.context import build_context
from haunted.dependencies import IftttError
from haunted.routers import (
    alexa_router,
    debug_router,
    ifttt_router,
    lights_router,
    oauth_router,
    triggers_router,
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    redis: Optional[Redis] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration; read from the environment when omitted.
        transport: httpx transport for all outbound HTTP (tests).
        redis: Redis client overriding ``settings.redis_url`` (tests).
    """
    if settings is None:
        settings = Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        app.state.started_at = time.monotonic()
        app.state.context = build_context(settings, transport=transport, redis=redis)
        yield
        await app.state.context.close()

    app = FastAPI(
        title="Haunted House Effects API",
        version=__version__,
        description="""
Fires haunted house effects (blackout, red flash, plug on, reset) on
Alexa routines, IFTTT applets and local Kasa/Tapo lights.
    """,
        lifespan=lifespan,
    )

    @app.exception_handler(IftttError)
    async def ifttt_error_handler(request: Request, exc: IftttError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        if request.url.path.startswith("/ifttt/"):
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"errors": [{"message": "Malformed request"}]},
            )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "message": "Malformed request"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "INTERNAL_ERROR", "message": "Internal server error"},
        )

    # Include routers
    app.include_router(alexa_router)
    app.include_router(triggers_router)
    app.include_router(lights_router)
    app.include_router(ifttt_router)
    app.include_router(oauth_router)
    app.include_router(debug_router)

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger.info(f"Haunted demo starting on http://{settings.host}:{settings.port}")
    try:
        # uvicorn handles SIGINT/SIGTERM and runs the lifespan shutdown
        uvicorn.run(
            "haunted.main:app",
            host=settings.host,
            port=settings.port,
            reload=settings.debug,
        )
    except OSError as e:
        logger.error(f"Could not start server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
