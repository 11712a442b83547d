from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from app.core.time_utils import to_utc, utc_now
from app.services.kite_session import KITE_SOURCE
from app.sync_client.api import ApiError, PortfolioApiClient

logger = logging.getLogger(__name__)

CONNECTED_MARKER = "kite_connected"
ERROR_MARKER = "kite_error"

OUTCOME_IGNORED = "ignored"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_ERROR = "error"
OUTCOME_SESSION_TIMEOUT = "session_timeout"
OUTCOME_SYNCED = "synced"
OUTCOME_MANUAL_SYNC = "manual_sync"
OUTCOME_SYNC_PENDING = "sync_pending"

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]


class OneShotLatch:
    """Opens exactly once; later ``try_fire`` calls return False."""

    def __init__(self) -> None:
        self._fired = False
        self._lock = threading.Lock()

    def try_fire(self) -> bool:
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            return True

    @property
    def fired(self) -> bool:
        return self._fired


@dataclass
class ReconcileResult:
    outcome: str
    cleaned_url: str
    message: str = ""
    session: Optional[Dict[str, Any]] = None
    claimed_orphan: bool = False


def strip_markers(url: str) -> str:
    """Drop the callback markers from ``url`` so a reload does not re-trigger."""

    parts = urlsplit(url)
    kept = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k not in {CONNECTED_MARKER, ERROR_MARKER}
    ]
    return urlunsplit(parts._replace(query=urlencode(kept)))


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return to_utc(value)
    if not value:
        return None
    try:
        return to_utc(datetime.fromisoformat(str(value)))
    except ValueError:
        return None


def _log_failed_attempt(phase: str, attempt: int, exc: Exception) -> None:
    logger.warning(
        "Callback poll attempt failed",
        extra={"extra": {"phase": phase, "attempt": attempt, "error": str(exc)}},
    )


class OAuthCallbackReconciler:
    """Resume the app after the broker redirect lands back on the page.

    One instance per page load; the latch makes repeated ``handle`` calls
    after the first marker no-ops.
    """

    def __init__(
        self,
        api: PortfolioApiClient,
        *,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = utc_now,
        latch: Optional[OneShotLatch] = None,
        session_attempts: int = 30,
        session_interval: float = 1.0,
        orphan_claim_after: int = 5,
        sync_attempts: int = 15,
        sync_interval: float = 2.0,
        sync_window: timedelta = timedelta(minutes=2),
    ) -> None:
        self.api = api
        self._sleep = sleep
        self._clock = clock
        self.latch = latch or OneShotLatch()
        self.session_attempts = session_attempts
        self.session_interval = session_interval
        self.orphan_claim_after = orphan_claim_after
        self.sync_attempts = sync_attempts
        self.sync_interval = sync_interval
        self.sync_window = sync_window

    async def handle(self, url: str) -> ReconcileResult:
        params = dict(parse_qsl(urlsplit(url).query, keep_blank_values=True))
        connected = params.get(CONNECTED_MARKER) == "true"
        error = params.get(ERROR_MARKER)
        if not connected and error is None:
            return ReconcileResult(outcome=OUTCOME_IGNORED, cleaned_url=url)

        cleaned = strip_markers(url)
        if not self.latch.try_fire():
            return ReconcileResult(outcome=OUTCOME_DUPLICATE, cleaned_url=cleaned)

        if not connected:
            # parse_qsl has already percent-decoded the message.
            logger.warning("Kite connection failed", extra={"extra": {"error": error}})
            return ReconcileResult(
                outcome=OUTCOME_ERROR,
                cleaned_url=cleaned,
                message=error or "Zerodha connection failed",
            )

        session, claimed = await self._poll_for_session()
        if session is None:
            return ReconcileResult(
                outcome=OUTCOME_SESSION_TIMEOUT,
                cleaned_url=cleaned,
                message="Could not verify session. Please try again.",
            )

        if await self._poll_for_sync():
            return ReconcileResult(
                outcome=OUTCOME_SYNCED,
                cleaned_url=cleaned,
                message="Your Zerodha holdings have been imported.",
                session=session,
                claimed_orphan=claimed,
            )

        try:
            await self.api.trigger_sync()
        except (ApiError, httpx.HTTPError) as exc:
            logger.warning(
                "Manual Kite sync after callback failed",
                extra={"extra": {"error": str(exc)}},
            )
            return ReconcileResult(
                outcome=OUTCOME_SYNC_PENDING,
                cleaned_url=cleaned,
                message='Sync may be pending. Click "Sync Holdings" to refresh.',
                session=session,
                claimed_orphan=claimed,
            )
        return ReconcileResult(
            outcome=OUTCOME_MANUAL_SYNC,
            cleaned_url=cleaned,
            message="Your Zerodha holdings have been imported.",
            session=session,
            claimed_orphan=claimed,
        )

    async def _poll_for_session(self) -> tuple[Optional[Dict[str, Any]], bool]:
        for attempt in range(1, self.session_attempts + 1):
            try:
                status = await self.api.get_session_status()
                if status.get("is_valid"):
                    return status, False
                if attempt >= self.orphan_claim_after:
                    claim = await self.api.claim_session()
                    if claim.get("claimed") and claim.get("session", {}).get("is_valid"):
                        logger.info("Claimed orphan Kite session after callback")
                        return claim["session"], True
            except (ApiError, httpx.HTTPError) as exc:
                _log_failed_attempt("session", attempt, exc)
            if attempt < self.session_attempts:
                await self._sleep(self.session_interval)
        return None, False

    async def _poll_for_sync(self) -> bool:
        for attempt in range(1, self.sync_attempts + 1):
            try:
                logs = await self.api.list_sync_logs(source=KITE_SOURCE, limit=5)
            except (ApiError, httpx.HTTPError) as exc:
                _log_failed_attempt("sync", attempt, exc)
                logs = []
            now = self._clock()
            for entry in logs:
                if entry.get("status") != "success":
                    continue
                created = _parse_timestamp(entry.get("created_at"))
                if created is not None and now - created < self.sync_window:
                    return True
            if attempt < self.sync_attempts:
                await self._sleep(self.sync_interval)
        return False


__all__ = [
    "OneShotLatch",
    "ReconcileResult",
    "OAuthCallbackReconciler",
    "strip_markers",
    "OUTCOME_IGNORED",
    "OUTCOME_DUPLICATE",
    "OUTCOME_ERROR",
    "OUTCOME_SESSION_TIMEOUT",
    "OUTCOME_SYNCED",
    "OUTCOME_MANUAL_SYNC",
    "OUTCOME_SYNC_PENDING",
]
