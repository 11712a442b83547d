from __future__ import annotations

from datetime import UTC, datetime
from typing import Iterable, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from app.models import Holding, QuoteCache
from app.services.holdings_normalizer import (
    NormalizedHolding,
    coerce_non_negative,
    coerce_number,
)


def replace_source_holdings(
    db: Session,
    *,
    user_id: int,
    source: str,
    holdings: Sequence[NormalizedHolding],
    commit: bool = True,
) -> int:
    """Replace every holding of ``source`` for the user with ``holdings``.

    Delete and insert share one transaction, so readers see either the old
    set or the new one.
    """

    db.query(Holding).filter(
        Holding.user_id == user_id,
        Holding.source == source,
    ).delete(synchronize_session=False)

    for item in holdings:
        db.add(
            Holding(
                user_id=user_id,
                symbol=item.symbol,
                name=item.name or item.symbol,
                isin=item.isin,
                type=item.type,
                sector=item.sector,
                quantity=coerce_non_negative(item.quantity),
                avg_price=coerce_non_negative(item.avg_price),
                ltp=coerce_number(item.ltp),
                exchange=item.exchange,
                source=source,
                xirr=item.xirr,
            )
        )

    if commit:
        db.commit()
    else:
        db.flush()
    return len(holdings)


def load_ledger(
    db: Session,
    *,
    user_id: int,
    sources: Optional[Iterable[str]] = None,
    asset_types: Optional[Iterable[str]] = None,
) -> list[Holding]:
    query = db.query(Holding).filter(Holding.user_id == user_id)
    source_list = [s for s in (sources or []) if s]
    if source_list:
        query = query.filter(Holding.source.in_(source_list))
    type_list = [t for t in (asset_types or []) if t]
    if type_list:
        query = query.filter(Holding.type.in_(type_list))
    return query.order_by(Holding.source, Holding.symbol, Holding.id).all()


def load_quotes(db: Session, symbols: Iterable[str]) -> dict[str, float]:
    wanted = sorted({s for s in symbols if s})
    if not wanted:
        return {}
    rows = db.query(QuoteCache).filter(QuoteCache.symbol.in_(wanted)).all()
    return {row.symbol: float(row.ltp) for row in rows}


def upsert_quotes(
    db: Session,
    quotes: Mapping[str, float],
    *,
    commit: bool = True,
) -> int:
    """Refresh cached last-traded prices; non-positive prices are ignored."""

    now = datetime.now(UTC)
    written = 0
    for symbol, price in quotes.items():
        value = coerce_number(price)
        if not symbol or value <= 0:
            continue
        row = db.get(QuoteCache, symbol)
        if row is None:
            row = QuoteCache(symbol=symbol, ltp=value, updated_at=now)
            db.add(row)
        else:
            row.ltp = value
            row.updated_at = now
        written += 1
    if commit:
        db.commit()
    return written


def list_sources(db: Session, *, user_id: int) -> list[str]:
    rows = (
        db.query(Holding.source)
        .filter(Holding.user_id == user_id)
        .distinct()
        .all()
    )
    return sorted(str(r[0]) for r in rows)


__all__ = [
    "replace_source_holdings",
    "load_ledger",
    "load_quotes",
    "upsert_quotes",
    "list_sources",
]
