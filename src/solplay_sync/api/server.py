"""
FastAPI application for the sync service.

``create_app`` builds one :class:`~solplay_sync.runtime.SyncRuntime` and
registers the routers around it. The lifespan makes sure the database schema
exists, starts the ingestion loop and shuts it down again with the server.

Run it with the CLI (``solplay-sync run``) or directly:

    uvicorn solplay_sync.api.server:create_app --factory
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import solplay_sync.config as sync_config
from solplay_sync import __version__
from solplay_sync.api.routes.register import register_routes
from solplay_sync.config import SyncConfig
from solplay_sync.db.errors import DatabaseError
from solplay_sync.db.schema import init_database
from solplay_sync.runtime import SyncRuntime

logger = logging.getLogger(__name__)


def create_app(
    cfg: SyncConfig | None = None,
    *,
    runtime: SyncRuntime | None = None,
    start_listener: bool = True,
) -> FastAPI:
    """
    Build the application.

    Args:
        cfg: Configuration; defaults to the module-level ``config``.
        runtime: Pre-built runtime (tests inject one with a fake reader).
        start_listener: Start the ingestion loop in the lifespan.
    """
    if runtime is None:
        if cfg is None:
            cfg = sync_config.config
        runtime = SyncRuntime.build(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_database()
        if start_listener:
            await runtime.start()
        try:
            yield
        finally:
            await runtime.shutdown()

    app = FastAPI(title="SolPlay Sync", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    # ========================================================================
    # MIDDLEWARE CONFIGURATION
    # ========================================================================

    # The player front end is served from a different origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DatabaseError)
    async def database_error_handler(request: Request, exc: DatabaseError):
        logger.error("Database error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "database unavailable"})

    register_routes(app, runtime)
    return app
