from fastapi import APIRouter, Depends

from ..core.config import Settings, get_settings
from . import auth, holdings, kite, mf_cas, snapshots, sync_logs, system_events, uploads

# ruff: noqa: B008  # FastAPI dependency injection pattern


router = APIRouter()


@router.get("/", tags=["system"])
def read_root(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    """Root endpoint to verify that the API is running."""

    return {
        "message": f"{settings.app_name} is running",
        "environment": settings.environment,
    }


@router.get("/health", tags=["system"])
def health_check(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.environment,
    }


router.include_router(auth.router, prefix="/api/auth", tags=["auth"])
router.include_router(kite.router, prefix="/api/kite", tags=["kite"])
router.include_router(holdings.router, prefix="/api/holdings", tags=["holdings"])
router.include_router(uploads.router, prefix="/api/uploads", tags=["uploads"])
router.include_router(mf_cas.router, prefix="/api/mf-cas", tags=["mf-cas"])
router.include_router(snapshots.router, prefix="/api/snapshots", tags=["snapshots"])
router.include_router(sync_logs.router, prefix="/api/sync-logs", tags=["sync-logs"])
router.include_router(
    system_events.router,
    prefix="/api/system-events",
    tags=["system-events"],
)
