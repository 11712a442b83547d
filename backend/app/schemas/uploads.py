from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class SkippedRowRead(BaseModel):
    row: int
    reason: str

    model_config = ConfigDict(from_attributes=True)


class ReconciliationRead(BaseModel):
    matched: bool
    field: str
    sheet_total: float
    parsed_total: float
    difference: float
    tolerance: float

    model_config = ConfigDict(from_attributes=True)


class UploadResponse(BaseModel):
    success: bool
    status: str
    source: str
    total_rows: int
    valid_holdings: int
    holdings_count: int
    skipped_count: int
    skipped_rows: List[SkippedRowRead] = []
    warnings: List[str] = []
    reconciliation: Optional[ReconciliationRead] = None
    progress: List[Dict[str, Any]] = []


__all__ = ["SkippedRowRead", "ReconciliationRead", "UploadResponse"]
