from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.api.errors import http_error
from app.core.config import Settings, get_settings
from app.core.errors import ConnectorError
from app.db.session import get_db
from app.models import User
from app.schemas.kite import (
    ClaimSessionResponse,
    DisconnectResponse,
    LoginUrlResponse,
    SessionStatusRead,
    SyncResponse,
)
from app.services.kite_session import (
    KiteClientFactory,
    build_login_url,
    claim_orphan_session,
    complete_oauth_callback,
    default_client_factory,
    disconnect,
    session_status,
    sync_holdings,
    sync_holdings_with_retry,
)

# ruff: noqa: B008  # FastAPI dependency injection pattern

router = APIRouter()
logger = logging.getLogger(__name__)


def get_kite_client_factory() -> KiteClientFactory:
    """Dependency hook so tests can substitute a fake broker client."""

    return default_client_factory


@router.get("/login-url", response_model=LoginUrlResponse)
def get_login_url(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user: User = Depends(get_current_user),
) -> LoginUrlResponse:
    try:
        issued = build_login_url(db, settings, user_id=user.id)
    except ConnectorError as exc:
        raise http_error(exc) from exc
    return LoginUrlResponse(login_url=issued.login_url, state=issued.state)


@router.get("/callback")
def kite_callback(
    request_token: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    callback_status: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    client_factory: KiteClientFactory = Depends(get_kite_client_factory),
) -> RedirectResponse:
    """Broker redirect target; always answers with a redirect to the app."""

    outcome = complete_oauth_callback(
        db,
        settings,
        request_token=request_token,
        state=state,
        status=callback_status,
        client_factory=client_factory,
    )
    return RedirectResponse(outcome.redirect_url, status_code=status.HTTP_302_FOUND)


@router.get("/session", response_model=SessionStatusRead)
def get_session_status(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user: User = Depends(get_current_user),
) -> SessionStatusRead:
    return SessionStatusRead(**session_status(db, settings, user_id=user.id))


@router.post("/session/claim", response_model=ClaimSessionResponse)
def claim_session(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user: User = Depends(get_current_user),
) -> ClaimSessionResponse:
    claimed = claim_orphan_session(db, user_id=user.id)
    return ClaimSessionResponse(
        claimed=claimed is not None,
        session=SessionStatusRead(**session_status(db, settings, user_id=user.id)),
    )


@router.post("/disconnect", response_model=DisconnectResponse)
def disconnect_session(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user: User = Depends(get_current_user),
    client_factory: KiteClientFactory = Depends(get_kite_client_factory),
) -> DisconnectResponse:
    result = disconnect(db, settings, user_id=user.id, client_factory=client_factory)
    return DisconnectResponse(success=result.success, message=result.message)


@router.post("/sync", response_model=SyncResponse)
def trigger_sync(
    retry: bool = Query(False),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user: User = Depends(get_current_user),
    client_factory: KiteClientFactory = Depends(get_kite_client_factory),
) -> SyncResponse:
    try:
        if retry:
            result = sync_holdings_with_retry(
                db, settings, user_id=user.id, client_factory=client_factory
            )
        else:
            result = sync_holdings(
                db, settings, user_id=user.id, client_factory=client_factory
            )
    except ConnectorError as exc:
        logger.warning(
            "Kite holdings sync failed",
            extra={"extra": {"user_id": user.id, "error_kind": exc.error_kind}},
        )
        raise http_error(exc) from exc

    return SyncResponse(
        success=True,
        source=result.source,
        holdings_count=result.holdings_count,
        message=f"Synced {result.holdings_count} holdings from {result.source}",
    )


__all__ = ["router", "get_kite_client_factory"]
