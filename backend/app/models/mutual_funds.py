from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Optional

from sqlalchemy import (
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.types import UTCDateTime

MF_STATUS_PENDING_OTP = "pending_otp"
MF_STATUS_OTP_SENT = "otp_sent"
MF_STATUS_VERIFIED = "verified"
MF_STATUS_SYNCING = "syncing"
MF_STATUS_COMPLETED = "completed"
MF_STATUS_FAILED = "failed"


class MFCASSync(Base):
    """State of one OTP-gated statement fetch for a user and PAN."""

    __tablename__ = "mf_cas_sync"

    __table_args__ = (Index("ix_mf_cas_sync_user_pan", "user_id", "pan"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    pan: Mapped[str] = mapped_column(String(10), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    otp_method: Mapped[str] = mapped_column(String(8), nullable=False, default="phone")
    otp_reference: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    sync_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=MF_STATUS_PENDING_OTP
    )
    time_period: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    updated_till: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    nickname: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text(), nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class MFFolio(Base):
    __tablename__ = "mf_folios"

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "folio_number",
            "scheme_code",
            name="ux_mf_folios_user_folio_scheme",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    pan: Mapped[str] = mapped_column(String(10), nullable=False)
    folio_number: Mapped[str] = mapped_column(String(64), nullable=False)
    amc_name: Mapped[str] = mapped_column(String(128), nullable=False)
    amc_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    scheme_name: Mapped[str] = mapped_column(String(255), nullable=False)
    scheme_code: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    isin: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    advisor: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    registrar: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(UTC)
    )


class MFTransaction(Base):
    __tablename__ = "mf_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    folio_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("mf_folios.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pan: Mapped[str] = mapped_column(String(10), nullable=False)
    folio_number: Mapped[str] = mapped_column(String(64), nullable=False)
    scheme_name: Mapped[str] = mapped_column(String(255), nullable=False)
    scheme_code: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    isin: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    amc_name: Mapped[str] = mapped_column(String(128), nullable=False)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    units: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    nav: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    balance_units: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    dividend_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)


class MFScheme(Base):
    """Scheme catalog entry refreshed from each fetched statement."""

    __tablename__ = "mf_schemes"

    scheme_code: Mapped[str] = mapped_column(String(64), primary_key=True)
    scheme_name: Mapped[str] = mapped_column(String(255), nullable=False)
    isin: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    amc_name: Mapped[str] = mapped_column(String(128), nullable=False)
    amc_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sub_category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    scheme_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    current_nav: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    nav_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


class MFHoldingSummary(Base):
    __tablename__ = "mf_holdings_summary"

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "folio_number",
            "scheme_code",
            name="ux_mf_holdings_summary_user_folio_scheme",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    folio_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("mf_folios.id", ondelete="CASCADE"), nullable=False
    )
    pan: Mapped[str] = mapped_column(String(10), nullable=False)
    folio_number: Mapped[str] = mapped_column(String(64), nullable=False)
    scheme_name: Mapped[str] = mapped_column(String(255), nullable=False)
    scheme_code: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    isin: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    amc_name: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    total_units: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    current_nav: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    current_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    invested_value: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_purchase_units: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_redemption_units: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_dividend_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_nav: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    xirr: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    absolute_return: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    absolute_return_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    first_investment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_transaction_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )


__all__ = [
    "MFCASSync",
    "MFFolio",
    "MFTransaction",
    "MFScheme",
    "MFHoldingSummary",
    "MF_STATUS_PENDING_OTP",
    "MF_STATUS_OTP_SENT",
    "MF_STATUS_VERIFIED",
    "MF_STATUS_SYNCING",
    "MF_STATUS_COMPLETED",
    "MF_STATUS_FAILED",
]
