from __future__ import annotations

import os
import time

import pytest

from app.core.auth import (
    create_session_token,
    decode_session_token,
    sign_payload,
    unsign_payload,
)
from app.core.config import get_settings
from app.core.crypto import decrypt_token, encrypt_token, mask_secret
from app.core.errors import ConfigurationError


def setup_module() -> None:  # type: ignore[override]
    os.environ["PB_CRYPTO_KEY"] = "test-crypto-and-tokens"
    get_settings.cache_clear()


def test_encrypted_token_round_trips_and_is_not_plain_text() -> None:
    settings = get_settings()
    encrypted = encrypt_token(settings, "access-token-123")
    assert "access-token-123" not in encrypted
    assert decrypt_token(settings, encrypted) == "access-token-123"


def test_missing_crypto_key_is_a_configuration_error() -> None:
    settings = get_settings().model_copy(update={"crypto_key": None})
    with pytest.raises(ConfigurationError):
        encrypt_token(settings, "secret")
    with pytest.raises(ConfigurationError):
        sign_payload(settings, {"a": 1})


def test_tampered_payload_is_rejected() -> None:
    settings = get_settings()
    token = sign_payload(settings, {"user_id": 1, "nonce": "abc"})
    payload_b64, sig = token.split(".", 1)
    forged = sign_payload(settings, {"user_id": 2, "nonce": "abc"}).split(".", 1)[0]

    assert unsign_payload(settings, token)["user_id"] == 1
    with pytest.raises(ValueError):
        unsign_payload(settings, f"{forged}.{sig}")
    with pytest.raises(ValueError):
        unsign_payload(settings, "not-a-token")


def test_session_token_carries_user_and_expires() -> None:
    settings = get_settings()
    token = create_session_token(settings, 42)
    user_id, payload = decode_session_token(settings, token)
    assert user_id == 42
    assert payload["exp"] > int(time.time())

    expired = create_session_token(settings, 42, ttl_seconds=-10)
    with pytest.raises(ValueError):
        decode_session_token(settings, expired)


def test_mask_secret_keeps_last_four_characters() -> None:
    assert mask_secret("abcdefgh") == "****efgh"
    assert mask_secret("abc") == "***"
    assert mask_secret(None) == ""
