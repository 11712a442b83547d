from __future__ import annotations

from typing import ClassVar


class ConnectorError(RuntimeError):
    """Base class for failures raised by the source connectors."""

    error_kind: ClassVar[str] = "connector"


class ConfigurationError(ConnectorError):
    """Provider credentials or endpoints are missing."""

    error_kind = "configuration"


class AuthenticationError(ConnectorError):
    """The caller or the broker session is not authenticated."""

    error_kind = "authentication"


class ProtocolError(ConnectorError):
    """A request arrived out of order or was rejected by the provider."""

    error_kind = "protocol"


class ReferenceExpiredError(ProtocolError):
    """The provider's OTP reference expired; the protocol must restart."""

    error_kind = "reference_expired"


class UploadValidationError(ProtocolError):
    """A file was rejected before it was uploaded."""

    error_kind = "validation"


class TransientError(ConnectorError):
    """Network or provider failure that may succeed when retried."""

    error_kind = "transient"


__all__ = [
    "ConnectorError",
    "ConfigurationError",
    "AuthenticationError",
    "ProtocolError",
    "ReferenceExpiredError",
    "UploadValidationError",
    "TransientError",
]
