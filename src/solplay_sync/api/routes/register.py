"""
Route registration entry point for the FastAPI application.
"""

from fastapi import FastAPI

from solplay_sync.api.routes import health, settlements, x402
from solplay_sync.runtime import SyncRuntime


def register_routes(app: FastAPI, runtime: SyncRuntime) -> None:
    """Register all API routes with the FastAPI app."""
    app.include_router(health.router(runtime))
    app.include_router(x402.router(runtime))
    app.include_router(settlements.router())
