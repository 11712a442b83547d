from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class SystemEventRead(BaseModel):
    id: int
    user_id: Optional[int] = None
    level: str
    category: str
    message: str
    details: Optional[dict[str, Any]] = None
    correlation_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("details", mode="before")
    @classmethod
    def _decode_details(cls, value: Any) -> Any:
        # Stored as JSON text.
        if isinstance(value, str):
            try:
                return json.loads(value)
            except ValueError:
                return {"raw": value}
        return value


__all__ = ["SystemEventRead"]
