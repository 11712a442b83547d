from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.logging import current_correlation_id, redact
from app.models import SystemEvent

logger = logging.getLogger(__name__)

EVENT_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def record_system_event(
    db: Session,
    *,
    level: str,
    category: str,
    message: str,
    user_id: Optional[int] = None,
    correlation_id: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> SystemEvent:
    """Persist a lifecycle event and mirror it to the structured log.

    Events recorded while serving a request inherit its correlation id.
    Sensitive detail fields are masked before they are stored.
    """

    level_name = level.upper() if level.upper() in EVENT_LEVELS else "INFO"
    cleaned = redact(details) if details else None
    event = SystemEvent(
        level=level_name,
        category=category,
        message=message[:255],
        user_id=user_id,
        correlation_id=correlation_id or current_correlation_id(),
        details=json.dumps(cleaned, ensure_ascii=False, default=str) if cleaned else None,
    )
    db.add(event)
    db.commit()
    db.refresh(event)

    logger.log(
        logging.getLevelName(level_name),
        message,
        extra={"extra": {"category": category, "user_id": user_id, **(cleaned or {})}},
    )
    return event


def list_system_events(
    db: Session,
    *,
    user_id: int,
    level: Optional[str] = None,
    category: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = 50,
) -> List[SystemEvent]:
    """The user's own events plus global ones, most recent first."""

    query = db.query(SystemEvent).filter(
        or_(SystemEvent.user_id == user_id, SystemEvent.user_id.is_(None))
    )
    if level is not None:
        query = query.filter(SystemEvent.level == level.upper())
    if category is not None:
        query = query.filter(SystemEvent.category == category)
    if since is not None:
        query = query.filter(SystemEvent.created_at >= since)
    return (
        query.order_by(SystemEvent.created_at.desc(), SystemEvent.id.desc())  # type: ignore[arg-type]
        .limit(limit)
        .all()
    )


__all__ = ["EVENT_LEVELS", "record_system_event", "list_system_events"]
