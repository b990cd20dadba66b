"""Health and root endpoints.

``/`` reports the service identity and the installed package version;
``/health`` adds the ingestion loop's status.
"""

from fastapi import APIRouter

from solplay_sync import __version__
from solplay_sync.api.models import HealthResponse
from solplay_sync.runtime import SyncRuntime


def router(runtime: SyncRuntime) -> APIRouter:
    api = APIRouter()

    @api.get("/")
    async def root():
        """Root endpoint showing API identity and current version."""
        return {"message": "SolPlay Sync API", "version": __version__}

    @api.get("/health", response_model=HealthResponse)
    async def health_check():
        """Liveness plus listener status (watermark, subscription, retries)."""
        return HealthResponse(status="ok", listener=runtime.loop.status())

    return api
