from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class EnrichedHoldingRead(BaseModel):
    id: Optional[int] = None
    symbol: str
    name: str
    isin: Optional[str] = None
    type: str
    sector: str
    quantity: float
    avg_price: float
    ltp: float
    exchange: str
    source: str
    xirr: Optional[float] = None
    invested_value: float
    current_value: float
    pnl: float
    pnl_percent: float
    recommendation: str

    model_config = ConfigDict(from_attributes=True)


class PortfolioSummaryRead(BaseModel):
    total_investment: float
    current_value: float
    total_pnl: float
    pnl_percent: float
    holdings_count: int

    model_config = ConfigDict(from_attributes=True)


class AllocationSliceRead(BaseModel):
    key: str
    value: float
    percent: float
    count: int

    model_config = ConfigDict(from_attributes=True)


class AllocationResponse(BaseModel):
    dimension: str
    total_value: float
    slices: List[AllocationSliceRead]


__all__ = [
    "EnrichedHoldingRead",
    "PortfolioSummaryRead",
    "AllocationSliceRead",
    "AllocationResponse",
]
