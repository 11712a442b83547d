from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

IST_OFFSET = timedelta(hours=5, minutes=30)


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_utc(dt: datetime) -> datetime:
    """Return tz-aware UTC for any datetime; naive inputs are taken as UTC."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def ist_date(dt: datetime | None = None) -> date:
    """Calendar date in India Standard Time for the given instant."""

    moment = to_utc(dt) if dt is not None else utc_now()
    return (moment + IST_OFFSET).date()


def to_ist_naive(dt: datetime) -> datetime:
    return (to_utc(dt) + IST_OFFSET).replace(tzinfo=None)


__all__ = ["IST_OFFSET", "utc_now", "to_utc", "ist_date", "to_ist_naive"]
