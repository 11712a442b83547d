from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta

from app.core.config import get_settings
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.models import SyncLog, User
from app.models.sync_log import SYNC_STATUS_FAILURE, SYNC_STATUS_SUCCESS
from app.services.sync_health import (
    FRESHNESS_FRESH,
    FRESHNESS_RECENT,
    FRESHNESS_STALE,
    classify_freshness,
    derive_health,
    sync_health_for_user,
    time_ago,
)
from app.services.sync_logs import append_sync_log, has_recent_success, list_sync_logs

NOW = datetime(2025, 6, 10, 12, 0, 0, tzinfo=UTC)


def setup_module() -> None:  # type: ignore[override]
    os.environ["PB_CRYPTO_KEY"] = "test-sync-health"
    get_settings.cache_clear()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def test_freshness_boundaries() -> None:
    assert classify_freshness(None, now=NOW) == FRESHNESS_STALE
    assert classify_freshness(NOW - timedelta(hours=23, minutes=59), now=NOW) == FRESHNESS_FRESH
    assert classify_freshness(NOW - timedelta(days=1), now=NOW) == FRESHNESS_RECENT
    assert classify_freshness(NOW - timedelta(days=7), now=NOW) == FRESHNESS_RECENT
    assert classify_freshness(NOW - timedelta(days=7, seconds=1), now=NOW) == FRESHNESS_STALE


def test_time_ago_labels() -> None:
    assert time_ago(None, now=NOW) == "Never"
    assert time_ago(NOW - timedelta(seconds=30), now=NOW) == "Just now"
    assert time_ago(NOW - timedelta(minutes=5), now=NOW) == "5m ago"
    assert time_ago(NOW - timedelta(hours=3), now=NOW) == "3h ago"
    assert time_ago(NOW - timedelta(days=2, hours=1), now=NOW) == "2d ago"


def test_derive_health_includes_sources_that_never_synced() -> None:
    health = derive_health(
        {"Zerodha": NOW - timedelta(hours=2)},
        sources=["Zerodha", "Groww"],
        now=NOW,
    )
    by_source = {h.source: h for h in health}
    assert by_source["Zerodha"].status == FRESHNESS_FRESH
    assert by_source["Groww"].status == FRESHNESS_STALE
    assert by_source["Groww"].age_text == "Never"


def test_health_uses_latest_success_only() -> None:
    with SessionLocal() as db:
        user = User(username="health-user")
        db.add(user)
        db.commit()
        db.refresh(user)

        db.add_all(
            [
                SyncLog(
                    user_id=user.id,
                    source="Zerodha",
                    status=SYNC_STATUS_SUCCESS,
                    holdings_count=4,
                    created_at=NOW - timedelta(days=3),
                ),
                SyncLog(
                    user_id=user.id,
                    source="Zerodha",
                    status=SYNC_STATUS_FAILURE,
                    error_message="Token expired",
                    created_at=NOW - timedelta(hours=1),
                ),
                SyncLog(
                    user_id=user.id,
                    source="MFCentral",
                    status=SYNC_STATUS_SUCCESS,
                    holdings_count=2,
                    created_at=NOW - timedelta(days=30),
                ),
            ]
        )
        db.commit()

        health = {
            h.source: h
            for h in sync_health_for_user(db, user_id=user.id, sources=["Upload"], now=NOW)
        }
        assert health["Zerodha"].status == FRESHNESS_RECENT
        assert health["MFCentral"].status == FRESHNESS_STALE
        assert health["Upload"].status == FRESHNESS_STALE

        assert not has_recent_success(
            db, user_id=user.id, source="Zerodha", since=NOW - timedelta(days=1)
        )


def test_sync_log_is_listed_newest_first() -> None:
    with SessionLocal() as db:
        user = User(username="log-user")
        db.add(user)
        db.commit()
        db.refresh(user)

        append_sync_log(db, user_id=user.id, source="Zerodha", status=SYNC_STATUS_FAILURE)
        append_sync_log(
            db, user_id=user.id, source="Zerodha", status=SYNC_STATUS_SUCCESS, holdings_count=3
        )
        append_sync_log(db, user_id=user.id, source="Groww", status=SYNC_STATUS_SUCCESS)

        logs = list_sync_logs(db, user_id=user.id, source="Zerodha")
        assert [entry.status for entry in logs] == [SYNC_STATUS_SUCCESS, SYNC_STATUS_FAILURE]
        assert logs[0].holdings_count == 3
        assert logs[0].created_at.tzinfo is not None
