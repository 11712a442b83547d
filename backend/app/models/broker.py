from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.types import UTCDateTime


class BrokerSession(Base):
    """An OAuth-connected broker account.

    ``user_id`` is empty for an orphan session: the callback completed but the
    state token did not identify the caller.
    """

    __tablename__ = "kite_sessions"

    __table_args__ = (Index("ix_kite_sessions_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    broker_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    access_token_encrypted: Mapped[str] = mapped_column(String(512), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(UTC)
    )


class OAuthState(Base):
    """A login nonce issued with a login URL; consumed by the callback."""

    __tablename__ = "oauth_states"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    nonce: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=lambda: datetime.now(UTC)
    )
    consumed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)


__all__ = ["BrokerSession", "OAuthState"]
