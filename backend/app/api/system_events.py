from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.db.session import get_db
from app.models import SystemEvent, User
from app.schemas.system_events import SystemEventRead
from app.services.system_events import list_system_events

# ruff: noqa: B008  # FastAPI dependency injection pattern

router = APIRouter()


@router.get("/", response_model=List[SystemEventRead])
def get_system_events(
    level: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> List[SystemEvent]:
    return list_system_events(
        db,
        user_id=user.id,
        level=level,
        category=category,
        since=since,
        limit=limit,
    )


__all__ = ["router"]
