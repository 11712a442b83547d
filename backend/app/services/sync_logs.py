from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import SyncLog
from app.models.sync_log import SYNC_STATUS_SUCCESS


def append_sync_log(
    db: Session,
    *,
    user_id: Optional[int],
    source: str,
    status: str,
    holdings_count: Optional[int] = None,
    error_message: Optional[str] = None,
    commit: bool = True,
) -> SyncLog:
    """Append one sync attempt record. Entries are never updated afterwards."""

    entry = SyncLog(
        user_id=user_id,
        source=source,
        status=status,
        holdings_count=holdings_count,
        error_message=error_message,
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    return entry


def list_sync_logs(
    db: Session,
    *,
    user_id: int,
    source: Optional[str] = None,
    limit: int = 50,
) -> list[SyncLog]:
    query = db.query(SyncLog).filter(SyncLog.user_id == user_id)
    if source is not None:
        query = query.filter(SyncLog.source == source)
    return (
        query.order_by(SyncLog.created_at.desc(), SyncLog.id.desc())
        .limit(limit)
        .all()
    )


def latest_successful_syncs(db: Session, *, user_id: int) -> dict[str, datetime]:
    """Most recent ``success`` timestamp for every source the user has synced."""

    rows = (
        db.query(SyncLog.source, func.max(SyncLog.created_at))
        .filter(SyncLog.user_id == user_id, SyncLog.status == SYNC_STATUS_SUCCESS)
        .group_by(SyncLog.source)
        .all()
    )
    result: dict[str, datetime] = {}
    for source, created_at in rows:
        if created_at is not None:
            result[str(source)] = created_at
    return result


def has_recent_success(
    db: Session,
    *,
    user_id: int,
    source: str,
    since: datetime,
) -> bool:
    return (
        db.query(SyncLog.id)
        .filter(
            SyncLog.user_id == user_id,
            SyncLog.source == source,
            SyncLog.status == SYNC_STATUS_SUCCESS,
            SyncLog.created_at >= since,
        )
        .first()
        is not None
    )


__all__ = [
    "append_sync_log",
    "list_sync_logs",
    "latest_successful_syncs",
    "has_recent_success",
]
