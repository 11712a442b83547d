from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.types import UTCDateTime


class Holding(Base):
    """One instrument position from one source.

    Rows for a (user, source) pair are replaced wholesale on every successful
    sync from that source; they are never merged.
    """

    __tablename__ = "holdings"

    __table_args__ = (
        Index("ix_holdings_user_source", "user_id", "source"),
        Index("ix_holdings_user_symbol", "user_id", "symbol"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    symbol: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    isin: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="Equity")
    sector: Mapped[str] = mapped_column(String(32), nullable=False, default="Other")
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    ltp: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    exchange: Mapped[str] = mapped_column(String(16), nullable=False, default="NSE")
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    xirr: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(UTC)
    )


class QuoteCache(Base):
    __tablename__ = "quotes_cache"

    symbol: Mapped[str] = mapped_column(String(64), primary_key=True)
    ltp: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


__all__ = ["Holding", "QuoteCache"]
