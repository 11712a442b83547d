from __future__ import annotations

import hmac
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.auth import get_current_user, get_current_user_optional
from app.core.config import Settings, get_settings
from app.db.session import get_db
from app.models import PortfolioSnapshot, User
from app.schemas.snapshots import (
    SnapshotCaptureRequest,
    SnapshotCaptureResponse,
    SnapshotDetailRead,
    SnapshotRead,
)
from app.services.portfolio_aggregator import (
    capture_snapshot,
    latest_snapshot,
    list_snapshots,
)

# ruff: noqa: B008  # FastAPI dependency injection pattern

router = APIRouter()


def _resolve_snapshot_user(
    payload: SnapshotCaptureRequest,
    user: Optional[User],
    cron_secret: Optional[str],
    settings: Settings,
) -> int:
    """Bearer callers snapshot themselves; cron callers name the user."""

    if user is not None:
        return user.id
    expected = settings.cron_secret
    if not expected or not cron_secret or not hmac.compare_digest(
        cron_secret.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated.",
        )
    if payload.user_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="user_id is required for scheduled captures.",
        )
    return payload.user_id


@router.post("/capture", response_model=SnapshotCaptureResponse)
def capture(
    payload: SnapshotCaptureRequest,
    x_cron_secret: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user: Optional[User] = Depends(get_current_user_optional),
) -> SnapshotCaptureResponse:
    user_id = _resolve_snapshot_user(payload, user, x_cron_secret, settings)
    result = capture_snapshot(
        db,
        user_id=user_id,
        sources=payload.sources,
        asset_types=payload.asset_types,
    )
    if result is None:
        return SnapshotCaptureResponse(success=True, message="No holdings to snapshot")

    return SnapshotCaptureResponse(
        success=True,
        message="Snapshot created" if result.created else "Snapshot updated",
        created=result.created,
        snapshot=SnapshotRead.model_validate(result.snapshot),
        source_breakdown=[SnapshotDetailRead.model_validate(b) for b in result.breakdown],
    )


@router.get("/", response_model=List[SnapshotRead])
def get_snapshots(
    limit: int = Query(90, ge=1, le=1000),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[PortfolioSnapshot]:
    return list_snapshots(db, user_id=user.id, limit=limit)


@router.get("/latest", response_model=Optional[SnapshotRead])
def get_latest_snapshot(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Optional[PortfolioSnapshot]:
    return latest_snapshot(db, user_id=user.id)


__all__ = ["router"]
