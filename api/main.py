"""
VelumX Liquidity API

FastAPI application serving pool, analytics, position and fee data from
the cached liquidity services, plus cache management endpoints.
"""

import logging
import sys
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.cache import router as cache_router
from api.liquidity import router as liquidity_router
from velumx import __version__
from velumx.exceptions import DataAbsentError, UpstreamError
from velumx.services.container import ServiceContainer
from velumx.utils.config import get_settings

# Configure logging to stdout
logging.basicConfig(
    level=get_settings().LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    app = FastAPI(
        title="VelumX Liquidity API",
        description="Pool discovery, analytics, LP positions and fee earnings for VelumX",
        version=__version__,
    )
    app.state.services = services

    # ========================================================================
    # STARTUP / SHUTDOWN
    # ========================================================================

    @app.on_event("startup")
    async def startup_event():
        if app.state.services is None:
            app.state.services = ServiceContainer()
        logger.info("Starting liquidity services...")
        await app.state.services.start()
        logger.info("Liquidity services started")

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Stopping liquidity services...")
        await app.state.services.stop()

    # ========================================================================
    # ERRORS
    # ========================================================================

    @app.exception_handler(DataAbsentError)
    async def data_absent_handler(request: Request, exc: DataAbsentError):
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(UpstreamError)
    async def upstream_handler(request: Request, exc: UpstreamError):
        logger.error(f"Upstream failure on {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=503,
            content={"detail": exc.message, "source": exc.source},
        )

    # ========================================================================
    # ENDPOINTS
    # ========================================================================

    @app.get("/")
    async def root():
        return {"status": "ok", "service": "VelumX Liquidity API"}

    @app.get("/api/health")
    async def health(request: Request):
        services: ServiceContainer = request.app.state.services
        cache = await services.cache.health_check()
        database = await services.repository.health_check()
        return {
            "status": "healthy" if database else "degraded",
            "timestamp": datetime.utcnow().isoformat(),
            "version": __version__,
            "cache": "connected" if cache.get("healthy") else "bypassed",
            "database": "connected" if database else "disconnected",
        }

    app.include_router(liquidity_router)
    app.include_router(cache_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
