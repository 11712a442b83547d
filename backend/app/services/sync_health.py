from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Optional

from sqlalchemy.orm import Session

from app.core.time_utils import to_utc, utc_now
from app.services.sync_logs import latest_successful_syncs

FRESHNESS_FRESH = "fresh"
FRESHNESS_RECENT = "recent"
FRESHNESS_STALE = "stale"

FRESH_WINDOW = timedelta(days=1)
RECENT_WINDOW = timedelta(days=7)


@dataclass
class SourceHealth:
    source: str
    status: str
    last_success_at: Optional[datetime]
    age_text: str


def classify_freshness(
    last_success_at: Optional[datetime],
    *,
    now: Optional[datetime] = None,
) -> str:
    """fresh under a day, recent up to seven days, stale after that or never."""

    if last_success_at is None:
        return FRESHNESS_STALE
    age = to_utc(now or utc_now()) - to_utc(last_success_at)
    if age < FRESH_WINDOW:
        return FRESHNESS_FRESH
    if age <= RECENT_WINDOW:
        return FRESHNESS_RECENT
    return FRESHNESS_STALE


def time_ago(moment: Optional[datetime], *, now: Optional[datetime] = None) -> str:
    if moment is None:
        return "Never"
    seconds = (to_utc(now or utc_now()) - to_utc(moment)).total_seconds()
    minutes = int(seconds // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def derive_health(
    latest: Mapping[str, datetime],
    *,
    sources: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> list[SourceHealth]:
    """Classify every source in ``latest`` plus any expected ``sources``."""

    moment = now or utc_now()
    names = sorted(set(latest) | set(sources))
    return [
        SourceHealth(
            source=name,
            status=classify_freshness(latest.get(name), now=moment),
            last_success_at=latest.get(name),
            age_text=time_ago(latest.get(name), now=moment),
        )
        for name in names
    ]


def sync_health_for_user(
    db: Session,
    *,
    user_id: int,
    sources: Iterable[str] = (),
    now: Optional[datetime] = None,
) -> list[SourceHealth]:
    return derive_health(
        latest_successful_syncs(db, user_id=user_id),
        sources=sources,
        now=now,
    )


__all__ = [
    "FRESHNESS_FRESH",
    "FRESHNESS_RECENT",
    "FRESHNESS_STALE",
    "SourceHealth",
    "classify_freshness",
    "time_ago",
    "derive_health",
    "sync_health_for_user",
]
