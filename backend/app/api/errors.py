from __future__ import annotations

from fastapi import HTTPException, status

from app.core.errors import (
    AuthenticationError,
    ConfigurationError,
    ConnectorError,
    ProtocolError,
    TransientError,
)

_STATUS_BY_ERROR: tuple[tuple[type[ConnectorError], int], ...] = (
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (ProtocolError, status.HTTP_400_BAD_REQUEST),
    (TransientError, status.HTTP_502_BAD_GATEWAY),
)


def status_for_error(exc: ConnectorError) -> int:
    for error_cls, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return code
    return status.HTTP_502_BAD_GATEWAY


def http_error(exc: ConnectorError) -> HTTPException:
    """Translate a connector error into the HTTP response routers raise."""

    return HTTPException(status_code=status_for_error(exc), detail=str(exc))


__all__ = ["http_error", "status_for_error"]
