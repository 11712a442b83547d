from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from sqlalchemy.orm import Session

from app.core.time_utils import ist_date
from app.models import MFHoldingSummary, PortfolioSnapshot, SnapshotSourceDetail
from app.services.holdings_normalizer import EnrichedHolding, enrich_holdings
from app.services.ledger import load_ledger, load_quotes
from app.services.sync_logs import latest_successful_syncs

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PortfolioSummary:
    total_investment: float = 0.0
    current_value: float = 0.0
    total_pnl: float = 0.0
    pnl_percent: float = 0.0
    holdings_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AllocationSlice:
    key: str
    value: float
    percent: float
    count: int


@dataclass
class SourceBreakdown:
    source: str
    asset_type: str
    invested_value: float
    current_value: float
    pnl: float
    pnl_percent: float
    holdings_count: int
    last_sync_at: Optional[datetime]


@dataclass
class SnapshotResult:
    snapshot: PortfolioSnapshot
    summary: PortfolioSummary
    breakdown: List[SourceBreakdown]
    created: bool


def _pct(part: float, whole: float) -> float:
    return part / whole * 100.0 if whole > 0 else 0.0


def summarize(holdings: Iterable[EnrichedHolding]) -> PortfolioSummary:
    summary = PortfolioSummary()
    for h in holdings:
        summary.total_investment += h.invested_value
        summary.current_value += h.current_value
        summary.holdings_count += 1
    summary.total_pnl = summary.current_value - summary.total_investment
    summary.pnl_percent = _pct(summary.total_pnl, summary.total_investment)
    return summary


def allocate(
    items: Iterable[T],
    key_fn: Callable[[T], Optional[str]],
    value_fn: Callable[[T], float],
) -> List[AllocationSlice]:
    """Group ``items`` by ``key_fn`` and give each group's share of the total.

    Slices are sorted by value, largest first. Percentages are 0 when the
    total is not positive.
    """

    totals: "OrderedDict[str, list[float]]" = OrderedDict()
    for item in items:
        key = key_fn(item) or "Other"
        bucket = totals.setdefault(key, [0.0, 0])
        bucket[0] += value_fn(item)
        bucket[1] += 1

    grand_total = sum(v for v, _ in totals.values())
    slices = [
        AllocationSlice(key=k, value=v, percent=_pct(v, grand_total), count=int(n))
        for k, (v, n) in totals.items()
    ]
    slices.sort(key=lambda s: s.value, reverse=True)
    return slices


HOLDING_DIMENSIONS: Dict[str, Callable[[EnrichedHolding], Optional[str]]] = {
    "sector": lambda h: h.sector,
    "type": lambda h: h.type,
    "source": lambda h: h.source,
}

MF_DIMENSIONS: Dict[str, Callable[[MFHoldingSummary], Optional[str]]] = {
    "amc": lambda row: row.amc_name,
    "category": lambda row: row.category,
}


def holding_allocations(
    holdings: Sequence[EnrichedHolding],
    dimension: str,
) -> List[AllocationSlice]:
    key_fn = HOLDING_DIMENSIONS.get(dimension)
    if key_fn is None:
        raise ValueError(f"Unknown allocation dimension: {dimension}")
    return allocate(holdings, key_fn, lambda h: h.current_value)


def mf_allocations(
    rows: Sequence[MFHoldingSummary],
    dimension: str,
) -> List[AllocationSlice]:
    key_fn = MF_DIMENSIONS.get(dimension)
    if key_fn is None:
        raise ValueError(f"Unknown mutual fund allocation dimension: {dimension}")
    return allocate(rows, key_fn, lambda row: float(row.current_value or 0.0))


def mf_portfolio_summary(rows: Sequence[MFHoldingSummary]) -> Dict[str, Any]:
    invested = sum(float(r.invested_value or 0.0) for r in rows)
    current = sum(float(r.current_value or 0.0) for r in rows)
    xirrs = [float(r.xirr) for r in rows if r.xirr is not None]
    return {
        "total_invested": invested,
        "current_value": current,
        "total_returns": current - invested,
        "returns_percent": _pct(current - invested, invested),
        "total_schemes": len({r.scheme_code for r in rows}),
        "total_folios": len({r.folio_number for r in rows}),
        "total_dividend_received": sum(float(r.total_dividend_amount or 0.0) for r in rows),
        "avg_xirr": sum(xirrs) / len(xirrs) if xirrs else None,
    }


def source_breakdown(
    holdings: Iterable[EnrichedHolding],
    last_sync: Optional[Dict[str, datetime]] = None,
) -> List[SourceBreakdown]:
    groups: "OrderedDict[tuple[str, str], list[EnrichedHolding]]" = OrderedDict()
    for h in holdings:
        groups.setdefault((h.source, h.type), []).append(h)

    out: List[SourceBreakdown] = []
    for (source, asset_type), members in groups.items():
        part = summarize(members)
        out.append(
            SourceBreakdown(
                source=source,
                asset_type=asset_type,
                invested_value=part.total_investment,
                current_value=part.current_value,
                pnl=part.total_pnl,
                pnl_percent=part.pnl_percent,
                holdings_count=part.holdings_count,
                last_sync_at=(last_sync or {}).get(source),
            )
        )
    out.sort(key=lambda b: (b.source, b.asset_type))
    return out


def load_enriched_ledger(
    db: Session,
    *,
    user_id: int,
    sources: Optional[Iterable[str]] = None,
    asset_types: Optional[Iterable[str]] = None,
) -> List[EnrichedHolding]:
    """Current ledger with quotes applied; the basis for every aggregate."""

    rows = load_ledger(db, user_id=user_id, sources=sources, asset_types=asset_types)
    quotes = load_quotes(db, (r.symbol for r in rows))
    return enrich_holdings(rows, quotes)


def capture_snapshot(
    db: Session,
    *,
    user_id: int,
    sources: Optional[Iterable[str]] = None,
    asset_types: Optional[Iterable[str]] = None,
    snapshot_date: Optional[date] = None,
) -> Optional[SnapshotResult]:
    """Upsert today's snapshot and replace its per-source detail rows.

    Returns ``None`` without writing when the (filtered) ledger is empty.
    The parent upsert and the detail replacement commit separately.
    """

    holdings = load_enriched_ledger(
        db, user_id=user_id, sources=sources, asset_types=asset_types
    )
    if not holdings:
        return None

    summary = summarize(holdings)
    breakdown = source_breakdown(holdings, latest_successful_syncs(db, user_id=user_id))
    day = snapshot_date or ist_date()

    snapshot = (
        db.query(PortfolioSnapshot)
        .filter(
            PortfolioSnapshot.user_id == user_id,
            PortfolioSnapshot.snapshot_date == day,
        )
        .one_or_none()
    )
    created = snapshot is None
    if snapshot is None:
        snapshot = PortfolioSnapshot(user_id=user_id, snapshot_date=day)
        db.add(snapshot)

    snapshot.total_investment = summary.total_investment
    snapshot.current_value = summary.current_value
    snapshot.total_pnl = summary.total_pnl
    snapshot.pnl_percent = summary.pnl_percent
    snapshot.holdings_count = summary.holdings_count
    db.commit()
    db.refresh(snapshot)

    db.query(SnapshotSourceDetail).filter(
        SnapshotSourceDetail.snapshot_id == snapshot.id
    ).delete(synchronize_session=False)
    for part in breakdown:
        db.add(
            SnapshotSourceDetail(
                snapshot_id=snapshot.id,
                source=part.source,
                asset_type=part.asset_type,
                invested_value=part.invested_value,
                current_value=part.current_value,
                pnl=part.pnl,
                pnl_percent=part.pnl_percent,
                holdings_count=part.holdings_count,
                last_sync_at=part.last_sync_at,
            )
        )
    db.commit()

    logger.info(
        "Portfolio snapshot captured",
        extra={
            "extra": {
                "user_id": user_id,
                "snapshot_date": day.isoformat(),
                "created": created,
                "holdings_count": summary.holdings_count,
            }
        },
    )
    return SnapshotResult(
        snapshot=snapshot, summary=summary, breakdown=breakdown, created=created
    )


def list_snapshots(
    db: Session,
    *,
    user_id: int,
    limit: int = 90,
) -> List[PortfolioSnapshot]:
    return (
        db.query(PortfolioSnapshot)
        .filter(PortfolioSnapshot.user_id == user_id)
        .order_by(PortfolioSnapshot.snapshot_date.desc())
        .limit(limit)
        .all()
    )


def latest_snapshot(db: Session, *, user_id: int) -> Optional[PortfolioSnapshot]:
    return (
        db.query(PortfolioSnapshot)
        .filter(PortfolioSnapshot.user_id == user_id)
        .order_by(PortfolioSnapshot.snapshot_date.desc())
        .first()
    )


def snapshot_details(db: Session, *, snapshot_id: int) -> List[SnapshotSourceDetail]:
    return (
        db.query(SnapshotSourceDetail)
        .filter(SnapshotSourceDetail.snapshot_id == snapshot_id)
        .order_by(SnapshotSourceDetail.source, SnapshotSourceDetail.asset_type)
        .all()
    )


__all__ = [
    "PortfolioSummary",
    "AllocationSlice",
    "SourceBreakdown",
    "SnapshotResult",
    "summarize",
    "allocate",
    "holding_allocations",
    "mf_allocations",
    "mf_portfolio_summary",
    "source_breakdown",
    "load_enriched_ledger",
    "capture_snapshot",
    "list_snapshots",
    "latest_snapshot",
    "snapshot_details",
]
