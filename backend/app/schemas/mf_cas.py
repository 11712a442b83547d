from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class MFCASRequest(BaseModel):
    """One phase of the OTP protocol, selected by ``action``."""

    action: Literal["request_otp", "verify_otp", "fetch_cas"]
    pan: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    otp_method: Literal["phone", "email"] = "phone"
    otp: Optional[str] = None
    otp_reference: Optional[str] = None
    sync_id: Optional[int] = None
    time_period: Optional[str] = None
    updated_till: Optional[date] = None
    nickname: Optional[str] = Field(default=None, max_length=64)


class MFCASResponse(BaseModel):
    success: bool
    action: str
    sync_id: int
    sync_status: str
    otp_reference: Optional[str] = None
    message: str
    holdings_count: Optional[int] = None
    folios_count: Optional[int] = None
    warnings: list[str] = []


class MFCASSyncRead(BaseModel):
    id: int
    pan: str
    otp_method: str
    sync_status: str
    otp_reference: Optional[str] = None
    error_message: Optional[str] = None
    nickname: Optional[str] = None
    last_synced_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MFHoldingRead(BaseModel):
    id: int
    folio_number: str
    scheme_name: str
    scheme_code: str
    isin: Optional[str] = None
    amc_name: str
    category: Optional[str] = None
    total_units: float
    current_nav: Optional[float] = None
    current_value: Optional[float] = None
    invested_value: Optional[float] = None
    total_dividend_amount: Optional[float] = None
    avg_nav: Optional[float] = None
    xirr: Optional[float] = None
    absolute_return: Optional[float] = None
    absolute_return_percent: Optional[float] = None
    first_investment_date: Optional[date] = None
    last_transaction_date: Optional[date] = None

    model_config = ConfigDict(from_attributes=True)


class MFPortfolioSummaryRead(BaseModel):
    total_invested: float
    current_value: float
    total_returns: float
    returns_percent: float
    total_schemes: int
    total_folios: int
    total_dividend_received: float
    avg_xirr: Optional[float] = None


class MFHoldingsResponse(BaseModel):
    summary: MFPortfolioSummaryRead
    holdings: list[MFHoldingRead]


__all__ = [
    "MFCASRequest",
    "MFCASResponse",
    "MFCASSyncRead",
    "MFHoldingRead",
    "MFPortfolioSummaryRead",
    "MFHoldingsResponse",
]
