from __future__ import annotations

import base64
import hashlib
from typing import Final

from app.core.config import Settings
from app.core.errors import ConfigurationError


def _keystream(settings: Settings, length: int) -> bytes:
    key = settings.crypto_key
    if not key:
        raise ConfigurationError(
            "Crypto key not configured. Set PB_CRYPTO_KEY in your environment/.env.",
        )
    seed = hashlib.sha256(key.encode("utf-8")).digest()
    stream = b""
    counter = 0
    while len(stream) < length:
        stream += hashlib.sha256(seed + counter.to_bytes(4, "big")).digest()
        counter += 1
    return stream[:length]


def encrypt_token(settings: Settings, token: str) -> str:
    """Obfuscate a broker access token before it is written to the database.

    XOR against a key-derived stream, then urlsafe Base64. Keeps tokens out of
    plain text at rest; it is not authenticated encryption.
    """

    raw = token.encode("utf-8")
    stream = _keystream(settings, len(raw))
    return base64.urlsafe_b64encode(bytes(a ^ b for a, b in zip(raw, stream))).decode(
        "ascii"
    )


def decrypt_token(settings: Settings, encrypted: str) -> str:
    data = base64.urlsafe_b64decode(encrypted.encode("ascii"))
    stream = _keystream(settings, len(data))
    return bytes(a ^ b for a, b in zip(data, stream)).decode("utf-8")


def mask_secret(value: str | None) -> str:
    """Render a secret for logs keeping only its last four characters."""

    if not value:
        return ""
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]


__all__: Final = ["encrypt_token", "decrypt_token", "mask_secret"]
