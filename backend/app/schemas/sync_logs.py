from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SyncLogRead(BaseModel):
    id: int
    source: str
    status: str
    holdings_count: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SourceHealthRead(BaseModel):
    source: str
    status: str
    last_success_at: Optional[datetime] = None
    age_text: str

    model_config = ConfigDict(from_attributes=True)


__all__ = ["SyncLogRead", "SourceHealthRead"]
