from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from app.core.config import Settings
from app.core.errors import (
    AuthenticationError,
    ConfigurationError,
    ProtocolError,
    ReferenceExpiredError,
    TransientError,
)

_EXPIRED_CODES = {"REFERENCE_EXPIRED", "OTP_REFERENCE_EXPIRED", "SESSION_EXPIRED"}


class MFCentralClient:
    """HTTP client for the mutual-fund statement provider.

    Three endpoints back the OTP protocol: ``request-otp``, ``verify-otp``
    and ``fetch-cas``. Responses are JSON objects; failures are raised as
    connector errors.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.Client(
            timeout=timeout_seconds, follow_redirects=True
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "MFCentralClient":
        if not settings.mf_central_api_url or not settings.mf_central_api_key:
            raise ConfigurationError("MF Central API credentials not configured")
        return cls(
            base_url=settings.mf_central_api_url,
            api_key=settings.mf_central_api_key,
            timeout_seconds=settings.mf_central_timeout_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            resp = self._client.post(url, headers=self._headers(), json=body)
        except httpx.TimeoutException as exc:
            raise TransientError(f"MF Central request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransientError(f"MF Central request failed: {exc}") from exc

        payload: Dict[str, Any] = {}
        try:
            parsed = resp.json()
            if isinstance(parsed, dict):
                payload = parsed
        except ValueError:
            payload = {}

        if resp.status_code < 400:
            return payload

        message = str(
            payload.get("error") or payload.get("message") or f"HTTP {resp.status_code}"
        )
        code = str(payload.get("code") or "").upper()
        if resp.status_code == 410 or code in _EXPIRED_CODES:
            raise ReferenceExpiredError(message)
        if resp.status_code in {401, 403}:
            raise AuthenticationError(f"MF Central rejected credentials: {message}")
        if resp.status_code >= 500 or resp.status_code == 429:
            raise TransientError(message)
        raise ProtocolError(message)

    def request_otp(
        self,
        *,
        pan: str,
        otp_method: str,
        phone: Optional[str] = None,
        email: Optional[str] = None,
    ) -> str:
        body: Dict[str, Any] = {"pan": pan, "otp_method": otp_method}
        if otp_method == "email":
            body["email"] = email
        else:
            body["phone"] = phone
        payload = self._post("request-otp", body)
        reference = payload.get("reference_id") or payload.get("otp_reference")
        if not reference:
            raise ProtocolError("MF Central did not return an OTP reference")
        return str(reference)

    def verify_otp(self, *, otp: str, otp_reference: str) -> None:
        payload = self._post("verify-otp", {"otp": otp, "reference_id": otp_reference})
        if payload.get("verified") is False or payload.get("success") is False:
            raise ProtocolError(str(payload.get("error") or "Invalid OTP"))

    def fetch_cas(
        self,
        *,
        otp_reference: str,
        time_period: Optional[str] = None,
        updated_till: Optional[str] = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"reference_id": otp_reference}
        if time_period:
            body["time_period"] = time_period
        if updated_till:
            body["updated_till"] = updated_till
        return self._post("fetch-cas", body)


__all__ = ["MFCentralClient"]
