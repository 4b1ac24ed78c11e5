import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import router as api_router
from .api.websocket import ConnectionManager, router as ws_router
from .core.config import Settings, get_settings
from .scanner.engine import DiscoveryEngine
from .scanner.network_probe import NetworkProbe

logger = logging.getLogger(__name__)


def build_app(settings: Optional[Settings] = None, probe: Optional[NetworkProbe] = None) -> FastAPI:
    """Create the API application around a fresh engine."""
    settings = settings or get_settings()
    engine = DiscoveryEngine(settings, probe=probe)
    connections = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("Starting %s v%s", settings.APP_NAME, settings.APP_VERSION)
        engine.register_callback(connections.engine_callback)
        await engine.start()

        yield

        logger.info("Shutting down...")
        await engine.shutdown()
        engine.unregister_callback(connections.engine_callback)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="LAN device discovery and access control",
        lifespan=lifespan
    )
    app.state.engine = engine
    app.state.connections = connections

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api", tags=["API"])
    app.include_router(ws_router, tags=["WebSocket"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "engine_running": engine.is_running,
            "scanning_available": engine.network is not None,
            "blocked_devices": len(engine.access.blocked_ips),
        }

    return app


def main():
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(build_app(settings), host=settings.API_HOST, port=settings.API_PORT)


if __name__ == "__main__":
    main()
