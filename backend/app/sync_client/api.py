from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from app.core.errors import UploadValidationError
from app.services.file_import import DEFAULT_MAX_BYTES, DEFAULT_UPLOAD_SOURCE, validate_upload
from app.services.upload_progress import (
    STEP_RECONCILING,
    STEP_UPLOADING,
    STEP_VALIDATING,
    UploadProgressTracker,
)

logger = logging.getLogger(__name__)


class ApiError(RuntimeError):
    """Non-2xx answer from the PortfolioBlend API."""

    def __init__(self, status_code: int, detail: str) -> None:
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        detail = body["detail"]
        return detail if isinstance(detail, str) else str(detail)
    return str(body)


class PortfolioApiClient:
    """Async client for the PortfolioBlend HTTP API used by the sync layer."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30,
        max_upload_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_upload_bytes = max_upload_bytes
        self._external_client = client is not None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            follow_redirects=True,
        )
        self._headers = {"Authorization": f"Bearer {token}"}

    async def __aenter__(self) -> "PortfolioApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.close()

    async def close(self) -> None:
        if not self._external_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        response = await self._client.request(
            method,
            f"{self.base_url}{path}",
            headers=headers,
            **kwargs,
        )
        if response.status_code >= 400:
            raise ApiError(response.status_code, _detail(response))
        if not response.content:
            return None
        return response.json()

    # Session connector -------------------------------------------------

    async def get_login_url(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/kite/login-url")

    async def get_session_status(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/kite/session")

    async def claim_session(self) -> Dict[str, Any]:
        return await self._request("POST", "/api/kite/session/claim")

    async def disconnect(self) -> Dict[str, Any]:
        return await self._request("POST", "/api/kite/disconnect")

    async def trigger_sync(self, *, retry: bool = False) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/api/kite/sync",
            params={"retry": "true" if retry else "false"},
        )

    # Ledger, logs, snapshots -------------------------------------------

    async def list_holdings(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/holdings/")

    async def list_sync_logs(
        self,
        *,
        source: Optional[str] = None,
        limit: int = 20,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": limit}
        if source is not None:
            params["source"] = source
        return await self._request("GET", "/api/sync-logs/", params=params)

    async def latest_snapshot(self) -> Optional[Dict[str, Any]]:
        return await self._request("GET", "/api/snapshots/latest")

    async def capture_snapshot(self) -> Dict[str, Any]:
        return await self._request("POST", "/api/snapshots/capture", json={})

    # OTP connector -------------------------------------------------------

    async def mf_cas(self, action: str, **fields: Any) -> Dict[str, Any]:
        payload = {"action": action, **{k: v for k, v in fields.items() if v is not None}}
        return await self._request("POST", "/api/mf-cas/", json=payload)

    # File connector -------------------------------------------------------

    async def upload_holdings_file(
        self,
        filename: str,
        content: bytes,
        *,
        source: str = DEFAULT_UPLOAD_SOURCE,
        tracker: UploadProgressTracker | None = None,
    ) -> Dict[str, Any]:
        """Validate locally, then upload; nothing is sent for a rejected file."""

        progress = tracker or UploadProgressTracker()
        progress.update(STEP_VALIDATING)
        try:
            validate_upload(filename, len(content), max_bytes=self.max_upload_bytes)
        except UploadValidationError as exc:
            progress.fail(str(exc))
            raise

        progress.update(STEP_UPLOADING, details={"filename": filename, "size": len(content)})
        try:
            result = await self._request(
                "POST",
                "/api/uploads/holdings",
                files={"file": (filename, content)},
                data={"source": source},
            )
        except (ApiError, httpx.HTTPError) as exc:
            progress.fail(exc.detail if isinstance(exc, ApiError) else str(exc))
            raise

        warnings = list(result.get("warnings") or [])
        progress.update(STEP_RECONCILING, warnings=warnings)
        progress.update(
            result.get("status") or "complete",
            details={
                "total_rows": result.get("total_rows"),
                "valid_holdings": result.get("valid_holdings"),
                "skipped_count": result.get("skipped_count"),
            },
        )
        logger.info(
            "Holdings file uploaded",
            extra={"extra": {"source": source, "status": result.get("status")}},
        )
        return result


__all__ = ["ApiError", "PortfolioApiClient"]
