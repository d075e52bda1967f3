"""FastAPI server for the ledger sync.

Thin trigger/status layer over SyncEngine.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import health, sync
from core import __version__
from core.config import SyncSettings
from core.observability.logging import configure_logging, get_logger
from sync_engine.engine import SyncEngine

logger = get_logger(__name__)


def create_app(engine: Optional[SyncEngine] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Without an engine, one is built from the environment at startup and
    closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = engine is None
        if owned:
            settings = SyncSettings.from_env().validate()
            configure_logging(
                level=getattr(logging, settings.log_level, logging.INFO),
                json_format=settings.log_json,
            )
            app.state.engine = SyncEngine.from_settings(settings)
        else:
            app.state.engine = engine
        logger.info("Ledger sync API starting up")

        yield

        logger.info("Ledger sync API shutting down")
        app.state.engine.request_shutdown()
        if owned:
            await app.state.engine.close()

    app = FastAPI(
        title="Ledger Sync API",
        description="Trigger and monitor ledger to accounting sync runs",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(sync.router, prefix="/sync", tags=["Sync"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000)
