"""Session connector for the OAuth broker (Zerodha Kite).

Lifecycle: disconnected -> pending_login -> connected -> expired | disconnected.
A session is valid only while ``now < expires_at``; nothing here refreshes a
session, an expired one always needs a new login round-trip.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote, urlencode

from sqlalchemy.orm import Session

from app.clients.zerodha import KITE_LOGIN_URL, ZerodhaClient
from app.core.auth import sign_payload, unsign_payload
from app.core.config import Settings
from app.core.crypto import decrypt_token, encrypt_token
from app.core.errors import (
    AuthenticationError,
    ConfigurationError,
    ConnectorError,
    ProtocolError,
)
from app.core.time_utils import to_utc, utc_now
from app.models import BrokerSession, OAuthState
from app.models.sync_log import (
    SYNC_STATUS_CONNECTED,
    SYNC_STATUS_DISCONNECTED,
    SYNC_STATUS_FAILURE,
    SYNC_STATUS_SUCCESS,
)
from app.services.holdings_normalizer import (
    NormalizedHolding,
    coerce_non_negative,
    coerce_number,
    guess_asset_type,
    guess_sector,
)
from app.services.ledger import replace_source_holdings, upsert_quotes
from app.services.retry import retry_with_backoff
from app.services.sync_logs import append_sync_log
from app.services.system_events import record_system_event

logger = logging.getLogger(__name__)

KITE_SOURCE = "Zerodha"
ORPHAN_MAX_AGE = timedelta(hours=1)

SESSION_STATUS_DISCONNECTED = "disconnected"
SESSION_STATUS_PENDING_LOGIN = "pending_login"
SESSION_STATUS_CONNECTED = "connected"
SESSION_STATUS_EXPIRED = "expired"

ERROR_INVALID_STATE = "invalid_state"
ERROR_NO_REQUEST_TOKEN = "No request token provided"
ERROR_CREDENTIALS_MISSING = "Kite API credentials not configured"
ERROR_TOKEN_EXCHANGE = "Token exchange failed"
ERROR_LOGIN_CANCELLED = "Login cancelled"
NO_SESSION_MESSAGE = "No valid Kite session. Please connect your Zerodha account."

KiteClientFactory = Callable[[Settings, Optional[str]], ZerodhaClient]


def default_client_factory(settings: Settings, access_token: Optional[str]) -> ZerodhaClient:
    return ZerodhaClient.from_settings(settings, access_token)


@dataclass
class LoginUrl:
    login_url: str
    state: str
    nonce: str


@dataclass
class CallbackOutcome:
    redirect_url: str
    connected: bool
    user_id: Optional[int] = None
    error: Optional[str] = None
    session_id: Optional[int] = None


@dataclass
class DisconnectResult:
    success: bool
    message: str
    revoked: bool = False


@dataclass
class SyncResult:
    source: str
    holdings_count: int
    used_fallback_token: bool = False


def is_session_valid(session: Optional[BrokerSession], *, now: Optional[datetime] = None) -> bool:
    if session is None:
        return False
    return to_utc(now or utc_now()) < to_utc(session.expires_at)


def get_current_session(db: Session, *, user_id: int) -> Optional[BrokerSession]:
    """The user's most recently created session, valid or not."""

    return (
        db.query(BrokerSession)
        .filter(BrokerSession.user_id == user_id)
        .order_by(BrokerSession.created_at.desc(), BrokerSession.id.desc())
        .first()
    )


def _has_pending_login(
    db: Session,
    settings: Settings,
    *,
    user_id: int,
    now: datetime,
) -> bool:
    cutoff = now - timedelta(seconds=settings.oauth_state_max_age_seconds)
    return (
        db.query(OAuthState.id)
        .filter(
            OAuthState.user_id == user_id,
            OAuthState.consumed_at.is_(None),
            OAuthState.created_at >= cutoff,
        )
        .first()
        is not None
    )


def session_status(
    db: Session,
    settings: Settings,
    *,
    user_id: int,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    moment = to_utc(now or utc_now())
    session = get_current_session(db, user_id=user_id)
    if is_session_valid(session, now=moment):
        status = SESSION_STATUS_CONNECTED
    elif _has_pending_login(db, settings, user_id=user_id, now=moment):
        status = SESSION_STATUS_PENDING_LOGIN
    elif session is not None:
        status = SESSION_STATUS_EXPIRED
    else:
        status = SESSION_STATUS_DISCONNECTED
    return {
        "status": status,
        "is_valid": status == SESSION_STATUS_CONNECTED,
        "session_id": session.id if session is not None else None,
        "broker_user_id": session.broker_user_id if session is not None else None,
        "created_at": session.created_at if session is not None else None,
        "expires_at": session.expires_at if session is not None else None,
    }


def build_login_url(
    db: Session,
    settings: Settings,
    *,
    user_id: int,
) -> LoginUrl:
    """Issue a login URL whose state token carries the caller and a fresh nonce."""

    if not settings.kite_api_key:
        raise ConfigurationError("Kite API key not configured")

    nonce = secrets.token_urlsafe(16)
    state = sign_payload(
        settings,
        {
            "user_id": int(user_id),
            "nonce": nonce,
            "app_url": settings.app_url,
            "timestamp": int(time.time()),
        },
    )
    db.add(OAuthState(nonce=nonce, user_id=user_id))
    db.commit()

    query = urlencode({"v": 3, "api_key": settings.kite_api_key, "state": state})
    return LoginUrl(login_url=f"{KITE_LOGIN_URL}?{query}", state=state, nonce=nonce)


def _redirect(settings: Settings, **params: str) -> str:
    base = settings.app_url.rstrip("/")
    return f"{base}?{urlencode(params, quote_via=quote)}"


def _error_outcome(settings: Settings, message: str) -> CallbackOutcome:
    return CallbackOutcome(
        redirect_url=_redirect(settings, kite_error=message),
        connected=False,
        error=message,
    )


def _consume_state(
    db: Session,
    settings: Settings,
    state: str,
    *,
    now: datetime,
) -> int:
    """Validate a state token, burn its nonce and return the embedded user id."""

    try:
        payload = unsign_payload(settings, state)
        nonce = str(payload["nonce"])
        user_id = int(payload["user_id"])
    except (ValueError, KeyError, TypeError) as exc:
        raise ProtocolError(ERROR_INVALID_STATE) from exc

    issued = (
        db.query(OAuthState)
        .filter(OAuthState.nonce == nonce, OAuthState.user_id == user_id)
        .one_or_none()
    )
    if issued is None or issued.consumed_at is not None:
        raise ProtocolError(ERROR_INVALID_STATE)

    age = now.timestamp() - float(payload.get("timestamp") or 0)
    if age > settings.oauth_state_max_age_seconds:
        # The broker has already authenticated the user; an old state is
        # logged but still honoured once.
        logger.warning(
            "OAuth state older than allowed window",
            extra={"extra": {"user_id": user_id, "age_seconds": int(age)}},
        )

    issued.consumed_at = now
    db.flush()
    return user_id


def _store_session(
    db: Session,
    settings: Settings,
    *,
    user_id: Optional[int],
    access_token: str,
    broker_user_id: Optional[str],
    now: datetime,
) -> BrokerSession:
    if user_id is not None:
        db.query(BrokerSession).filter(BrokerSession.user_id == user_id).delete(
            synchronize_session=False
        )
    db.query(BrokerSession).filter(
        BrokerSession.user_id.is_(None),
        BrokerSession.created_at < now - ORPHAN_MAX_AGE,
    ).delete(synchronize_session=False)

    session = BrokerSession(
        user_id=user_id,
        broker_user_id=broker_user_id,
        access_token_encrypted=encrypt_token(settings, access_token),
        expires_at=now + timedelta(hours=settings.kite_session_ttl_hours),
        created_at=now,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    return session


def complete_oauth_callback(
    db: Session,
    settings: Settings,
    *,
    request_token: Optional[str],
    state: Optional[str],
    status: Optional[str] = None,
    client_factory: KiteClientFactory = default_client_factory,
    now: Optional[datetime] = None,
) -> CallbackOutcome:
    """Finish the OAuth round-trip and decide where to send the browser.

    Never raises: every failure is turned into a ``kite_error`` redirect.
    Without a state token the session is stored as an orphan for the
    reconciler to claim later.
    """

    moment = to_utc(now or utc_now())

    if status and status.lower() not in {"success", ""} and not request_token:
        return _error_outcome(settings, ERROR_LOGIN_CANCELLED)
    if not request_token:
        return _error_outcome(settings, ERROR_NO_REQUEST_TOKEN)

    user_id: Optional[int] = None
    if state:
        try:
            user_id = _consume_state(db, settings, state, now=moment)
        except ProtocolError:
            db.rollback()
            logger.warning("Rejected OAuth callback with invalid state")
            return _error_outcome(settings, ERROR_INVALID_STATE)
    else:
        logger.info("OAuth callback without state; session will be stored as orphan")

    if not settings.kite_api_key or not settings.kite_api_secret:
        db.commit()
        return _error_outcome(settings, ERROR_CREDENTIALS_MISSING)

    try:
        client = client_factory(settings, None)
        grant = client.exchange_request_token(request_token, settings.kite_api_secret)
    except ConnectorError as exc:
        db.commit()
        logger.error(
            "Kite token exchange failed",
            extra={"extra": {"user_id": user_id, "error": str(exc)}},
        )
        return _error_outcome(settings, ERROR_TOKEN_EXCHANGE)

    session = _store_session(
        db,
        settings,
        user_id=user_id,
        access_token=grant.access_token,
        broker_user_id=grant.broker_user_id,
        now=moment,
    )
    append_sync_log(
        db,
        user_id=user_id,
        source=KITE_SOURCE,
        status=SYNC_STATUS_CONNECTED,
        holdings_count=0,
    )
    record_system_event(
        db,
        level="INFO",
        category="kite_session",
        message="Kite session connected",
        user_id=user_id,
        details={
            "session_id": session.id,
            "orphan": user_id is None,
            "access_token": grant.access_token,
        },
    )

    if user_id is not None:
        try:
            sync_holdings(db, settings, user_id=user_id, client_factory=client_factory)
        except ConnectorError as exc:
            logger.warning(
                "Post-connect holdings sync failed",
                extra={"extra": {"user_id": user_id, "error": str(exc)}},
            )

    return CallbackOutcome(
        redirect_url=_redirect(settings, kite_connected="true"),
        connected=True,
        user_id=user_id,
        session_id=session.id,
    )


def claim_orphan_session(
    db: Session,
    *,
    user_id: int,
    now: Optional[datetime] = None,
) -> Optional[BrokerSession]:
    """Attach the newest recent, unexpired orphan session to ``user_id``.

    Assumes at most one unauthenticated login is in flight system-wide.
    """

    moment = to_utc(now or utc_now())
    orphan = (
        db.query(BrokerSession)
        .filter(
            BrokerSession.user_id.is_(None),
            BrokerSession.created_at >= moment - ORPHAN_MAX_AGE,
        )
        .order_by(BrokerSession.created_at.desc(), BrokerSession.id.desc())
        .first()
    )
    if orphan is None or not is_session_valid(orphan, now=moment):
        return None

    db.query(BrokerSession).filter(
        BrokerSession.user_id == user_id,
        BrokerSession.id != orphan.id,
    ).delete(synchronize_session=False)
    orphan.user_id = user_id
    db.commit()
    db.refresh(orphan)
    return orphan


def disconnect(
    db: Session,
    settings: Settings,
    *,
    user_id: int,
    client_factory: KiteClientFactory = default_client_factory,
) -> DisconnectResult:
    """Revoke (best effort) and delete the current session.

    Local deletion happens whatever the remote revoke does; calling this
    without a session succeeds trivially.
    """

    session = get_current_session(db, user_id=user_id)
    if session is None:
        return DisconnectResult(success=True, message="No active session to disconnect")

    revoked = False
    try:
        access_token = decrypt_token(settings, session.access_token_encrypted)
        client = client_factory(settings, access_token)
        client.revoke(access_token)
        revoked = True
    except Exception as exc:
        record_system_event(
            db,
            level="WARNING",
            category="kite_session",
            message="Kite token revoke failed; continuing with local disconnect",
            user_id=user_id,
            details={"session_id": session.id, "error": str(exc)},
        )

    db.delete(session)
    db.commit()
    append_sync_log(
        db,
        user_id=user_id,
        source=KITE_SOURCE,
        status=SYNC_STATUS_DISCONNECTED,
    )
    record_system_event(
        db,
        level="INFO",
        category="kite_session",
        message="Kite session disconnected",
        user_id=user_id,
        details={"revoked": revoked},
    )
    return DisconnectResult(
        success=True,
        message="Zerodha session disconnected",
        revoked=revoked,
    )


def resolve_access_token(
    db: Session,
    settings: Settings,
    *,
    user_id: int,
    now: Optional[datetime] = None,
) -> tuple[str, bool]:
    """Return ``(access_token, used_fallback)`` for broker calls."""

    session = get_current_session(db, user_id=user_id)
    if is_session_valid(session, now=now):
        assert session is not None
        return decrypt_token(settings, session.access_token_encrypted), False
    if settings.kite_access_token:
        return settings.kite_access_token, True
    raise AuthenticationError(NO_SESSION_MESSAGE)


def map_kite_holding(row: Dict[str, Any]) -> Optional[NormalizedHolding]:
    symbol = str(row.get("tradingsymbol") or "").strip().upper()
    if not symbol:
        return None
    quantity = coerce_non_negative(row.get("quantity")) + coerce_non_negative(
        row.get("t1_quantity")
    )
    exchange = str(row.get("exchange") or "NSE").upper()
    isin = row.get("isin") or None
    asset_type = guess_asset_type(symbol, symbol, isin=isin, exchange=exchange)
    avg_price = coerce_non_negative(row.get("average_price"))
    ltp = coerce_number(row.get("last_price")) or avg_price
    return NormalizedHolding(
        symbol=symbol,
        name=symbol,
        type=asset_type,
        sector=guess_sector(symbol, symbol, asset_type=asset_type),
        quantity=quantity,
        avg_price=avg_price,
        ltp=ltp,
        exchange=exchange,
        source=KITE_SOURCE,
        isin=isin,
    )


def sync_holdings(
    db: Session,
    settings: Settings,
    *,
    user_id: int,
    client_factory: KiteClientFactory = default_client_factory,
    now: Optional[datetime] = None,
) -> SyncResult:
    """Fetch broker holdings and replace this source's slice of the ledger.

    On failure nothing in the ledger changes, a ``failure`` entry is logged
    and the error propagates.
    """

    try:
        access_token, used_fallback = resolve_access_token(
            db, settings, user_id=user_id, now=now
        )
        client = client_factory(settings, access_token)
        rows = client.list_holdings()
    except ConnectorError as exc:
        db.rollback()
        append_sync_log(
            db,
            user_id=user_id,
            source=KITE_SOURCE,
            status=SYNC_STATUS_FAILURE,
            error_message=str(exc),
        )
        raise

    holdings = [h for h in (map_kite_holding(r) for r in rows) if h is not None]
    count = replace_source_holdings(
        db, user_id=user_id, source=KITE_SOURCE, holdings=holdings
    )
    append_sync_log(
        db,
        user_id=user_id,
        source=KITE_SOURCE,
        status=SYNC_STATUS_SUCCESS,
        holdings_count=count,
    )
    upsert_quotes(db, {h.symbol: h.ltp for h in holdings})

    logger.info(
        "Kite holdings synced",
        extra={
            "extra": {
                "user_id": user_id,
                "holdings_count": count,
                "used_fallback_token": used_fallback,
            }
        },
    )
    return SyncResult(
        source=KITE_SOURCE,
        holdings_count=count,
        used_fallback_token=used_fallback,
    )


def sync_holdings_with_retry(
    db: Session,
    settings: Settings,
    *,
    user_id: int,
    client_factory: KiteClientFactory = default_client_factory,
    sleep: Callable[[float], None] = time.sleep,
    max_attempts: int = 5,
) -> SyncResult:
    """Bounded exponential-backoff variant: 1s doubling to 10s, five attempts."""

    return retry_with_backoff(
        lambda: sync_holdings(
            db, settings, user_id=user_id, client_factory=client_factory
        ),
        max_attempts=max_attempts,
        sleep=sleep,
    )


__all__ = [
    "KITE_SOURCE",
    "KiteClientFactory",
    "default_client_factory",
    "SESSION_STATUS_CONNECTED",
    "SESSION_STATUS_DISCONNECTED",
    "SESSION_STATUS_EXPIRED",
    "SESSION_STATUS_PENDING_LOGIN",
    "ERROR_INVALID_STATE",
    "LoginUrl",
    "CallbackOutcome",
    "DisconnectResult",
    "SyncResult",
    "is_session_valid",
    "get_current_session",
    "session_status",
    "build_login_url",
    "complete_oauth_callback",
    "claim_orphan_session",
    "disconnect",
    "resolve_access_token",
    "map_kite_holding",
    "sync_holdings",
    "sync_holdings_with_retry",
]
