from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.types import UTCDateTime

SYNC_STATUS_SUCCESS = "success"
SYNC_STATUS_FAILURE = "failure"
SYNC_STATUS_DISCONNECTED = "disconnected"
SYNC_STATUS_CONNECTED = "connected"


class SyncLog(Base):
    """Append-only record of one synchronization attempt for one source."""

    __tablename__ = "sync_logs"

    __table_args__ = (
        Index("ix_sync_logs_user_source_created", "user_id", "source", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    holdings_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(UTC)
    )


__all__ = [
    "SyncLog",
    "SYNC_STATUS_SUCCESS",
    "SYNC_STATUS_FAILURE",
    "SYNC_STATUS_DISCONNECTED",
    "SYNC_STATUS_CONNECTED",
]
