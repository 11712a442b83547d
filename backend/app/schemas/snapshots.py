from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class SnapshotCaptureRequest(BaseModel):
    sources: Optional[List[str]] = None
    asset_types: Optional[List[str]] = None
    # Only honoured for cron callers authenticated by the shared secret.
    user_id: Optional[int] = None


class SnapshotDetailRead(BaseModel):
    source: str
    asset_type: str
    invested_value: float
    current_value: float
    pnl: float
    pnl_percent: float
    holdings_count: int
    last_sync_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SnapshotRead(BaseModel):
    id: int
    snapshot_date: date
    total_investment: float
    current_value: float
    total_pnl: float
    pnl_percent: float
    holdings_count: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SnapshotCaptureResponse(BaseModel):
    success: bool
    message: str
    created: bool = False
    snapshot: Optional[SnapshotRead] = None
    source_breakdown: List[SnapshotDetailRead] = []


__all__ = [
    "SnapshotCaptureRequest",
    "SnapshotDetailRead",
    "SnapshotRead",
    "SnapshotCaptureResponse",
]
