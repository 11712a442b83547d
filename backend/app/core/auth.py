from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any, Final, Optional, Tuple

from app.core.config import Settings
from app.core.errors import ConfigurationError

SESSION_ALGORITHM: Final = "hs256"
SESSION_COOKIE_NAME: Final = "pb_session"
SESSION_DEFAULT_TTL_SECONDS: Final = 60 * 60 * 24 * 7  # 7 days


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode((data + padding).encode("ascii"))


def _get_signing_secret(settings: Settings) -> bytes:
    key = settings.crypto_key
    if not key:
        raise ConfigurationError(
            "Crypto key not configured. Set PB_CRYPTO_KEY for token signing.",
        )
    return key.encode("utf-8")


def sign_payload(settings: Settings, payload: dict[str, Any]) -> str:
    """Serialize and sign a JSON payload.

    Format: ``base64url(payload).base64url(signature)``.
    """

    payload_bytes = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode(
        "utf-8",
    )
    secret = _get_signing_secret(settings)
    signature = hmac.new(secret, payload_bytes, hashlib.sha256).digest()
    return f"{_b64encode(payload_bytes)}.{_b64encode(signature)}"


def unsign_payload(settings: Settings, token: str) -> dict[str, Any]:
    """Verify a token produced by :func:`sign_payload` and return its payload.

    Raises ``ValueError`` on any malformed or tampered input.
    """

    try:
        payload_b64, sig_b64 = token.split(".", 1)
        payload_bytes = _b64decode(payload_b64)
        signature = _b64decode(sig_b64)
    except (ValueError, UnicodeEncodeError) as exc:
        raise ValueError("Invalid token format.") from exc

    secret = _get_signing_secret(settings)
    expected_sig = hmac.new(secret, payload_bytes, hashlib.sha256).digest()
    if not hmac.compare_digest(signature, expected_sig):
        raise ValueError("Invalid token signature.")

    try:
        payload = json.loads(payload_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError("Invalid token payload.") from exc
    if not isinstance(payload, dict):
        raise ValueError("Invalid token payload.")
    return payload


def create_session_token(
    settings: Settings,
    user_id: int,
    ttl_seconds: Optional[int] = None,
) -> str:
    """Create an HMAC-signed bearer token carrying user id and expiry."""

    if ttl_seconds is None:
        ttl_seconds = SESSION_DEFAULT_TTL_SECONDS

    payload: dict[str, Any] = {
        "sub": user_id,
        "exp": int(time.time()) + int(ttl_seconds),
        "alg": SESSION_ALGORITHM,
    }
    return sign_payload(settings, payload)


def decode_session_token(
    settings: Settings,
    token: str,
) -> Tuple[int, dict[str, Any]]:
    """Decode and validate a bearer token.

    Returns ``(user_id, payload)`` if valid, otherwise raises ``ValueError``.
    """

    payload = unsign_payload(settings, token)

    if payload.get("alg") != SESSION_ALGORITHM:
        raise ValueError("Invalid session token algorithm.")

    exp = int(payload.get("exp", 0))
    if exp < int(time.time()):
        raise ValueError("Session token has expired.")

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError) as exc:
        raise ValueError("Invalid session token subject.") from exc
    return user_id, payload


__all__ = [
    "sign_payload",
    "unsign_payload",
    "create_session_token",
    "decode_session_token",
    "SESSION_COOKIE_NAME",
]
