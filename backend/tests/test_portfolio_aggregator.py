from __future__ import annotations

import os
from datetime import date

import pytest

from app.core.config import get_settings
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.models import Holding, PortfolioSnapshot, SnapshotSourceDetail, User
from app.services.holdings_normalizer import NormalizedHolding, enrich_holdings
from app.services.ledger import (
    list_sources,
    load_ledger,
    replace_source_holdings,
    upsert_quotes,
)
from app.services.portfolio_aggregator import (
    allocate,
    capture_snapshot,
    holding_allocations,
    latest_snapshot,
    load_enriched_ledger,
    snapshot_details,
    summarize,
)


def setup_module() -> None:  # type: ignore[override]
    os.environ["PB_CRYPTO_KEY"] = "test-portfolio-aggregator"
    get_settings.cache_clear()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def _create_user(username: str) -> int:
    with SessionLocal() as db:
        user = User(username=username)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user.id


def _holding(symbol: str, *, qty: float, avg: float, ltp: float, **kw: str) -> NormalizedHolding:
    return NormalizedHolding(
        symbol=symbol,
        name=symbol,
        quantity=qty,
        avg_price=avg,
        ltp=ltp,
        type=kw.get("type", "Equity"),
        sector=kw.get("sector", "Other"),
        source=kw.get("source", ""),
    )


def test_replacing_one_source_leaves_other_sources_untouched() -> None:
    user_id = _create_user("ledger-isolation")
    with SessionLocal() as db:
        replace_source_holdings(
            db,
            user_id=user_id,
            source="Zerodha",
            holdings=[_holding("INFY", qty=10, avg=100, ltp=110)],
        )
        replace_source_holdings(
            db,
            user_id=user_id,
            source="Groww",
            holdings=[
                _holding("TCS", qty=1, avg=3000, ltp=3100),
                _holding("HDFCBANK", qty=5, avg=1500, ltp=1600),
            ],
        )
        # A second sync from Groww replaces its slice wholesale.
        replace_source_holdings(
            db,
            user_id=user_id,
            source="Groww",
            holdings=[_holding("WIPRO", qty=20, avg=400, ltp=420)],
        )

        rows = load_ledger(db, user_id=user_id)
        assert sorted((r.source, r.symbol) for r in rows) == [
            ("Groww", "WIPRO"),
            ("Zerodha", "INFY"),
        ]
        assert list_sources(db, user_id=user_id) == ["Groww", "Zerodha"]

        only_zerodha = load_ledger(db, user_id=user_id, sources=["Zerodha"])
        assert [r.symbol for r in only_zerodha] == ["INFY"]


def test_replace_with_empty_list_clears_the_source() -> None:
    user_id = _create_user("ledger-clear")
    with SessionLocal() as db:
        replace_source_holdings(
            db,
            user_id=user_id,
            source="Upload",
            holdings=[_holding("ITC", qty=100, avg=400, ltp=450)],
        )
        count = replace_source_holdings(db, user_id=user_id, source="Upload", holdings=[])
        assert count == 0
        assert db.query(Holding).filter(Holding.user_id == user_id).count() == 0


def test_allocation_percentages_sum_to_one_hundred() -> None:
    holdings = enrich_holdings(
        [
            {"symbol": "INFY", "sector": "IT", "quantity": 10, "avg_price": 100, "ltp": 150},
            {"symbol": "TCS", "sector": "IT", "quantity": 1, "avg_price": 3000, "ltp": 3300},
            {"symbol": "HDFCBANK", "sector": "Banking", "quantity": 2, "avg_price": 1500, "ltp": 1700},
        ]
    )
    slices = holding_allocations(holdings, "sector")

    assert [s.key for s in slices] == ["IT", "Banking"]
    assert sum(s.percent for s in slices) == pytest.approx(100.0)
    assert slices[0].value == pytest.approx(1500.0 + 3300.0)
    assert slices[0].count == 2


def test_allocation_of_zero_value_portfolio_has_zero_percentages() -> None:
    slices = allocate([{"k": "a", "v": 0.0}, {"k": "b", "v": 0.0}], lambda i: i["k"], lambda i: i["v"])
    assert [s.percent for s in slices] == [0.0, 0.0]

    summary = summarize([])
    assert summary.pnl_percent == 0.0
    assert summary.holdings_count == 0


def test_unknown_allocation_dimension_is_rejected() -> None:
    with pytest.raises(ValueError):
        holding_allocations([], "planet")


def test_cached_quotes_override_persisted_prices() -> None:
    user_id = _create_user("ledger-quotes")
    with SessionLocal() as db:
        replace_source_holdings(
            db,
            user_id=user_id,
            source="Zerodha",
            holdings=[_holding("QUOTED", qty=2, avg=100, ltp=100)],
        )
        upsert_quotes(db, {"QUOTED": 125.0, "IGNORED": 0.0})

        enriched = load_enriched_ledger(db, user_id=user_id)
        assert enriched[0].ltp == pytest.approx(125.0)
        assert enriched[0].current_value == pytest.approx(250.0)


def test_snapshot_capture_is_idempotent_per_day() -> None:
    user_id = _create_user("snapshot-owner")
    day = date(2025, 6, 2)
    with SessionLocal() as db:
        replace_source_holdings(
            db,
            user_id=user_id,
            source="Zerodha",
            holdings=[_holding("SNAPA", qty=10, avg=100, ltp=120)],
        )
        replace_source_holdings(
            db,
            user_id=user_id,
            source="MFCentral",
            holdings=[_holding("SCHEME1", qty=50, avg=20, ltp=22, type="Mutual Fund")],
        )

        first = capture_snapshot(db, user_id=user_id, snapshot_date=day)
        assert first is not None
        assert first.created is True
        assert first.snapshot.current_value == pytest.approx(1200.0 + 1100.0)
        assert first.snapshot.total_investment == pytest.approx(2000.0)

        replace_source_holdings(
            db,
            user_id=user_id,
            source="Zerodha",
            holdings=[_holding("SNAPA", qty=10, avg=100, ltp=130)],
        )
        second = capture_snapshot(db, user_id=user_id, snapshot_date=day)
        assert second is not None
        assert second.created is False
        assert second.snapshot.id == first.snapshot.id

        rows = (
            db.query(PortfolioSnapshot)
            .filter(PortfolioSnapshot.user_id == user_id)
            .all()
        )
        assert len(rows) == 1
        assert rows[0].current_value == pytest.approx(1300.0 + 1100.0)

        details = snapshot_details(db, snapshot_id=first.snapshot.id)
        assert [(d.source, d.asset_type) for d in details] == [
            ("MFCentral", "Mutual Fund"),
            ("Zerodha", "Equity"),
        ]
        assert (
            db.query(SnapshotSourceDetail)
            .filter(SnapshotSourceDetail.snapshot_id == first.snapshot.id)
            .count()
            == 2
        )
        assert latest_snapshot(db, user_id=user_id).id == first.snapshot.id  # type: ignore[union-attr]


def test_snapshot_of_empty_ledger_writes_nothing() -> None:
    user_id = _create_user("snapshot-empty")
    with SessionLocal() as db:
        assert capture_snapshot(db, user_id=user_id, snapshot_date=date(2025, 6, 2)) is None
        assert (
            db.query(PortfolioSnapshot)
            .filter(PortfolioSnapshot.user_id == user_id)
            .count()
            == 0
        )
