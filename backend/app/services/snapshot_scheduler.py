from __future__ import annotations

import os
import sys
from datetime import UTC, date, datetime, timedelta
from threading import Event, Lock, Thread
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.errors import ConnectorError
from app.core.time_utils import ist_date, to_ist_naive
from app.db.session import SessionLocal
from app.models import BrokerSession
from app.services.kite_session import (
    KiteClientFactory,
    default_client_factory,
    sync_holdings,
)
from app.services.portfolio_aggregator import capture_snapshot
from app.services.system_events import record_system_event

_state_lock = Lock()
_scheduler_started = False
_stop_event = Event()
_state: dict[str, date | None] = {"last_run_ist_date": None}


def _parse_hhmm(value: str) -> tuple[int, int]:
    hour, minute = (value or "15:45").split(":", 1)
    return int(hour), int(minute)


def _time_in_window(
    now: datetime,
    *,
    start_hhmm: tuple[int, int],
    window_seconds: int,
) -> bool:
    start = now.replace(
        hour=start_hhmm[0], minute=start_hhmm[1], second=0, microsecond=0
    )
    end = start + timedelta(seconds=window_seconds)
    return start <= now < end


def users_with_valid_sessions(db: Session, *, now: Optional[datetime] = None) -> List[int]:
    moment = now or datetime.now(UTC)
    rows = (
        db.query(BrokerSession.user_id)
        .filter(BrokerSession.user_id.is_not(None), BrokerSession.expires_at > moment)
        .distinct()
        .all()
    )
    return sorted(int(r[0]) for r in rows)


def run_scheduled_snapshots(
    db: Session,
    settings: Settings,
    *,
    now: Optional[datetime] = None,
    client_factory: Optional[KiteClientFactory] = None,
) -> List[Dict[str, Any]]:
    """Sync then snapshot every user holding a valid broker session.

    A failed sync does not stop the snapshot; the ledger from the last good
    sync is captured instead.
    """

    moment = now or datetime.now(UTC)
    day = ist_date(moment)
    results: List[Dict[str, Any]] = []
    for user_id in users_with_valid_sessions(db, now=moment):
        outcome: Dict[str, Any] = {"user_id": user_id, "synced": False, "captured": False}
        try:
            sync_holdings(
                db,
                settings,
                user_id=user_id,
                client_factory=client_factory or default_client_factory,
                now=moment,
            )
            outcome["synced"] = True
        except ConnectorError as exc:
            outcome["sync_error"] = str(exc)

        try:
            captured = capture_snapshot(db, user_id=user_id, snapshot_date=day)
            outcome["captured"] = captured is not None
            record_system_event(
                db,
                level="INFO",
                category="scheduled_snapshot",
                message="Scheduled snapshot captured"
                if captured is not None
                else "Scheduled snapshot skipped: no holdings",
                user_id=user_id,
                details={"snapshot_date": day.isoformat(), **outcome},
            )
        except Exception as exc:
            db.rollback()
            outcome["error"] = str(exc)
            record_system_event(
                db,
                level="ERROR",
                category="scheduled_snapshot",
                message="Scheduled snapshot failed",
                user_id=user_id,
                details={"snapshot_date": day.isoformat(), "error": str(exc)},
            )
        results.append(outcome)
    return results


def _snapshot_loop() -> None:  # pragma: no cover - background loop
    settings = get_settings()
    run_at = _parse_hhmm(settings.snapshot_run_at_ist)
    window_seconds = 90

    while not _stop_event.is_set():
        now_utc = datetime.now(UTC)
        today_ist = ist_date(now_utc)
        now_ist = to_ist_naive(now_utc)

        if _time_in_window(now_ist, start_hhmm=run_at, window_seconds=window_seconds):
            should_run = False
            with _state_lock:
                if _state.get("last_run_ist_date") != today_ist:
                    _state["last_run_ist_date"] = today_ist
                    should_run = True
            if should_run:
                with SessionLocal() as db:
                    run_scheduled_snapshots(db, settings, now=now_utc)

        _stop_event.wait(timeout=20.0)


def schedule_daily_snapshots() -> None:
    global _scheduler_started
    if _scheduler_started:
        return
    if "pytest" in sys.modules or os.getenv("PYTEST_CURRENT_TEST"):
        return
    if not get_settings().snapshot_schedule_enabled:
        return
    _scheduler_started = True

    Thread(
        target=_snapshot_loop,
        name="portfolio-daily-snapshots",
        daemon=True,
    ).start()


def stop_daily_snapshots() -> None:
    _stop_event.set()


__all__ = [
    "users_with_valid_sessions",
    "run_scheduled_snapshots",
    "schedule_daily_snapshots",
    "stop_daily_snapshots",
]
