from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

from app.core.time_utils import to_utc


class UTCDateTime(TypeDecorator):
    """Timestamp column persisted as naive UTC and loaded back as aware UTC.

    Naive values handed to the ORM are assumed to already be UTC. Session
    expiry and orphan-age comparisons rely on both sides being aware.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(  # type: ignore[override]
        self, value: Optional[datetime], dialect
    ) -> Optional[datetime]:
        if value is None:
            return None
        return to_utc(value).replace(tzinfo=None)

    def process_result_value(  # type: ignore[override]
        self, value: Optional[datetime], dialect
    ) -> Optional[datetime]:
        return to_utc(value) if value is not None else None


__all__ = ["UTCDateTime"]
