from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class LoginUrlResponse(BaseModel):
    login_url: str
    state: str


class SessionStatusRead(BaseModel):
    status: str
    is_valid: bool
    session_id: Optional[int] = None
    broker_user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class ClaimSessionResponse(BaseModel):
    claimed: bool
    session: SessionStatusRead


class DisconnectResponse(BaseModel):
    success: bool
    message: str


class SyncResponse(BaseModel):
    success: bool
    source: str
    holdings_count: int
    message: str


__all__ = [
    "LoginUrlResponse",
    "SessionStatusRead",
    "ClaimSessionResponse",
    "DisconnectResponse",
    "SyncResponse",
]
