from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from app.core.config import Settings
from app.core.errors import (
    AuthenticationError,
    ConfigurationError,
    ConnectorError,
    ProtocolError,
    TransientError,
)

KITE_LOGIN_URL = "https://kite.zerodha.com/connect/login"

# kiteconnect exception class names mapped onto our taxonomy. Matching by
# name keeps fakes in tests free of the kiteconnect import.
_AUTH_ERRORS = {"TokenException", "PermissionException"}
_PROTOCOL_ERRORS = {"InputException", "DataException", "OrderException"}


class KiteLike(Protocol):
    """Protocol capturing the KiteConnect methods we rely on.

    Tests substitute a fake implementation so no network calls are made.
    """

    def set_access_token(self, access_token: str) -> None:  # pragma: no cover
        ...

    def generate_session(
        self, request_token: str, api_secret: str
    ) -> Dict[str, Any]:  # pragma: no cover
        ...

    def invalidate_access_token(
        self, access_token: Optional[str] = None
    ) -> Any:  # pragma: no cover
        ...

    def holdings(self) -> List[Dict[str, Any]]:  # pragma: no cover
        ...


@dataclass
class KiteSessionGrant:
    access_token: str
    broker_user_id: Optional[str]
    raw: Dict[str, Any]


def translate_kite_error(exc: BaseException) -> ConnectorError:
    """Map a kiteconnect/transport exception onto a connector error."""

    if isinstance(exc, ConnectorError):
        return exc
    name = type(exc).__name__
    message = str(exc) or name
    if name in _AUTH_ERRORS:
        return AuthenticationError(message)
    if name in _PROTOCOL_ERRORS:
        return ProtocolError(message)
    # Network failures and anything unrecognised are treated as retryable.
    return TransientError(message)


def build_kite(settings: Settings) -> KiteLike:
    if not settings.kite_api_key:
        raise ConfigurationError("Kite API key not configured")

    # Import lazily so tests using a fake implementation do not require kiteconnect.
    from kiteconnect import KiteConnect  # type: ignore[import]

    return KiteConnect(api_key=settings.kite_api_key)


class ZerodhaClient:
    """Thin wrapper around the KiteConnect client used by the session connector."""

    def __init__(self, kite: KiteLike) -> None:
        self._kite = kite

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        access_token: Optional[str] = None,
    ) -> "ZerodhaClient":
        kite = build_kite(settings)
        if access_token:
            kite.set_access_token(access_token)
        return cls(kite)

    def exchange_request_token(
        self,
        request_token: str,
        api_secret: str,
    ) -> KiteSessionGrant:
        try:
            data = self._kite.generate_session(request_token, api_secret=api_secret)
        except Exception as exc:
            raise translate_kite_error(exc) from exc
        access_token = str((data or {}).get("access_token") or "")
        if not access_token:
            raise ProtocolError("Token exchange returned no access token")
        return KiteSessionGrant(
            access_token=access_token,
            broker_user_id=(data or {}).get("user_id"),
            raw=dict(data or {}),
        )

    def list_holdings(self) -> List[Dict[str, Any]]:
        try:
            rows = self._kite.holdings()
        except Exception as exc:
            raise translate_kite_error(exc) from exc
        return list(rows or [])

    def revoke(self, access_token: str) -> None:
        try:
            self._kite.invalidate_access_token(access_token)
        except Exception as exc:
            raise translate_kite_error(exc) from exc


__all__ = [
    "KITE_LOGIN_URL",
    "KiteLike",
    "KiteSessionGrant",
    "ZerodhaClient",
    "build_kite",
    "translate_kite_error",
]
