from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.db.session import get_db
from app.models import SyncLog, User
from app.schemas.sync_logs import SourceHealthRead, SyncLogRead
from app.services.ledger import list_sources
from app.services.sync_health import sync_health_for_user
from app.services.sync_logs import list_sync_logs

# ruff: noqa: B008  # FastAPI dependency injection pattern

router = APIRouter()


@router.get("/", response_model=List[SyncLogRead])
def get_sync_logs(
    source: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[SyncLog]:
    """Return the caller's sync history, most recent first."""

    return list_sync_logs(db, user_id=user.id, source=source, limit=limit)


@router.get("/health", response_model=List[SourceHealthRead])
def get_sync_health(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[SourceHealthRead]:
    health = sync_health_for_user(
        db, user_id=user.id, sources=list_sources(db, user_id=user.id)
    )
    return [SourceHealthRead.model_validate(h) for h in health]


__all__ = ["router"]
