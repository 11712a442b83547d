"""OTP connector for the mutual-fund statement provider.

Protocol: pending_otp -> otp_sent -> verified -> syncing -> completed, with
failed reachable from any non-terminal state. A rejected OTP never advances
the state; only an expired provider reference forces a restart from
``request_otp``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clients.mfcentral import MFCentralClient
from app.core.config import Settings
from app.core.errors import ConnectorError, ProtocolError, ReferenceExpiredError
from app.core.time_utils import ist_date, utc_now
from app.models import MFCASSync, MFFolio, MFHoldingSummary, MFScheme, MFTransaction
from app.models.mutual_funds import (
    MF_STATUS_COMPLETED,
    MF_STATUS_FAILED,
    MF_STATUS_OTP_SENT,
    MF_STATUS_PENDING_OTP,
    MF_STATUS_SYNCING,
    MF_STATUS_VERIFIED,
)
from app.models.sync_log import SYNC_STATUS_FAILURE, SYNC_STATUS_SUCCESS
from app.services.holdings_normalizer import NormalizedHolding, coerce_number, guess_sector
from app.services.ledger import replace_source_holdings
from app.services.returns import (
    CasTransaction,
    scheme_cashflows,
    summarize_transactions,
    xirr,
)
from app.services.sync_logs import append_sync_log

logger = logging.getLogger(__name__)

MF_SOURCE = "MFCentral"
OTP_METHODS = {"phone", "email"}

_PAN_RE = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
_DATE_FORMATS = ("%Y-%m-%d", "%d-%b-%Y", "%d/%m/%Y", "%d-%m-%Y")


@dataclass
class FetchResult:
    sync: MFCASSync
    folios_count: int
    schemes_count: int
    transactions_count: int
    holdings_count: int
    warnings: List[str] = field(default_factory=list)


def normalize_pan(pan: Optional[str]) -> str:
    value = (pan or "").strip().upper()
    if not _PAN_RE.match(value):
        raise ProtocolError("Invalid PAN format")
    return value


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date: {value!r}")


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return coerce_number(value)


def _find_sync(
    db: Session,
    *,
    user_id: int,
    sync_id: Optional[int] = None,
    otp_reference: Optional[str] = None,
) -> Optional[MFCASSync]:
    query = db.query(MFCASSync).filter(MFCASSync.user_id == user_id)
    if sync_id is not None:
        query = query.filter(MFCASSync.id == sync_id)
    elif otp_reference:
        query = query.filter(MFCASSync.otp_reference == otp_reference)
    else:
        return None
    return query.order_by(MFCASSync.id.desc()).first()


def latest_sync(db: Session, *, user_id: int) -> Optional[MFCASSync]:
    return (
        db.query(MFCASSync)
        .filter(MFCASSync.user_id == user_id)
        .order_by(MFCASSync.updated_at.desc(), MFCASSync.id.desc())
        .first()
    )


def request_otp(
    db: Session,
    client: MFCentralClient,
    *,
    user_id: int,
    pan: str,
    otp_method: str = "phone",
    phone: Optional[str] = None,
    email: Optional[str] = None,
    time_period: Optional[str] = None,
    updated_till: Optional[date] = None,
    nickname: Optional[str] = None,
) -> MFCASSync:
    """Phase 1. Re-invoking for the same user and PAN restarts the open attempt."""

    pan_value = normalize_pan(pan)
    method = (otp_method or "phone").strip().lower()
    if method not in OTP_METHODS:
        raise ProtocolError("otp_method must be 'phone' or 'email'")
    if method == "phone" and not (phone or "").strip():
        raise ProtocolError("Phone number is required for phone OTP")
    if method == "email" and not (email or "").strip():
        raise ProtocolError("Email is required for email OTP")

    sync = (
        db.query(MFCASSync)
        .filter(
            MFCASSync.user_id == user_id,
            MFCASSync.pan == pan_value,
            MFCASSync.sync_status != MF_STATUS_COMPLETED,
        )
        .order_by(MFCASSync.id.desc())
        .first()
    )
    if sync is None:
        sync = MFCASSync(user_id=user_id, pan=pan_value)
        db.add(sync)

    sync.sync_status = MF_STATUS_PENDING_OTP
    sync.otp_method = method
    sync.phone = (phone or "").strip() or None
    sync.email = (email or "").strip() or None
    sync.otp_reference = None
    sync.time_period = time_period
    sync.updated_till = updated_till
    sync.nickname = nickname
    sync.error_message = None
    db.commit()
    db.refresh(sync)

    try:
        reference = client.request_otp(
            pan=pan_value,
            otp_method=method,
            phone=sync.phone,
            email=sync.email,
        )
    except ConnectorError as exc:
        sync.sync_status = MF_STATUS_FAILED
        sync.error_message = str(exc)
        db.commit()
        raise

    sync.otp_reference = reference
    sync.sync_status = MF_STATUS_OTP_SENT
    db.commit()
    db.refresh(sync)
    logger.info(
        "MF Central OTP requested",
        extra={"extra": {"user_id": user_id, "sync_id": sync.id, "method": method}},
    )
    return sync


def verify_otp(
    db: Session,
    client: MFCentralClient,
    *,
    user_id: int,
    otp: str,
    otp_reference: Optional[str] = None,
    sync_id: Optional[int] = None,
) -> MFCASSync:
    """Phase 2. A rejected OTP keeps ``otp_sent`` so the caller can retry."""

    sync = _find_sync(db, user_id=user_id, sync_id=sync_id, otp_reference=otp_reference)
    if sync is None:
        raise ProtocolError("No OTP request found. Request an OTP first.")

    if sync.sync_status in {MF_STATUS_VERIFIED, MF_STATUS_SYNCING, MF_STATUS_COMPLETED}:
        # Already past this phase; nothing to re-verify and nothing to fetch.
        return sync
    if sync.otp_reference is None:
        raise ReferenceExpiredError("OTP reference expired. Request a new OTP.")
    if sync.sync_status not in {MF_STATUS_OTP_SENT, MF_STATUS_FAILED}:
        raise ProtocolError(f"Cannot verify OTP while sync is {sync.sync_status}")

    code = (otp or "").strip()
    if not code:
        raise ProtocolError("OTP is required")

    try:
        client.verify_otp(otp=code, otp_reference=sync.otp_reference)
    except ReferenceExpiredError as exc:
        sync.sync_status = MF_STATUS_FAILED
        sync.otp_reference = None
        sync.error_message = str(exc)
        db.commit()
        raise
    except ProtocolError as exc:
        sync.sync_status = MF_STATUS_OTP_SENT
        sync.error_message = f"Invalid OTP: {exc}"
        db.commit()
        raise
    except ConnectorError as exc:
        sync.error_message = str(exc)
        db.commit()
        raise

    sync.sync_status = MF_STATUS_VERIFIED
    sync.error_message = None
    db.commit()
    db.refresh(sync)
    return sync


def _folio_transactions(raw: Dict[str, Any]) -> List[CasTransaction]:
    out: List[CasTransaction] = []
    for txn in raw.get("transactions") or []:
        out.append(
            CasTransaction(
                date=_parse_date(txn.get("date") or txn.get("transaction_date")),
                type=str(txn.get("type") or txn.get("transaction_type") or "").lower(),
                amount=coerce_number(txn.get("amount")),
                units=coerce_number(txn.get("units")),
                nav=_optional_float(txn.get("nav")),
                balance_units=_optional_float(txn.get("balance_units")),
                description=txn.get("description"),
                dividend_rate=_optional_float(txn.get("dividend_rate")),
            )
        )
    return out


def _replace_mf_tables(
    db: Session,
    *,
    user_id: int,
    pan: str,
    cas: Dict[str, Any],
    as_of: date,
) -> tuple[int, int, int, List[str]]:
    """Delete and rebuild folios, transactions and summaries for the PAN.

    Flushes but does not commit; the caller owns the transaction.
    """

    warnings: List[str] = []
    folio_ids = [
        fid
        for (fid,) in db.query(MFFolio.id)
        .filter(MFFolio.user_id == user_id, MFFolio.pan == pan)
        .all()
    ]
    if folio_ids:
        db.query(MFHoldingSummary).filter(MFHoldingSummary.folio_id.in_(folio_ids)).delete(
            synchronize_session=False
        )
        db.query(MFTransaction).filter(MFTransaction.folio_id.in_(folio_ids)).delete(
            synchronize_session=False
        )
        db.query(MFFolio).filter(MFFolio.id.in_(folio_ids)).delete(synchronize_session=False)
    db.flush()

    folios = cas.get("folios")
    if not isinstance(folios, list):
        raise ValueError("Statement has no folio list")

    schemes: set[str] = set()
    stored = 0
    txn_count = 0
    for raw in folios:
        folio_number = str(raw.get("folio_number") or "").strip()
        scheme_name = str(raw.get("scheme_name") or "").strip()
        if not folio_number or not scheme_name:
            warnings.append("Skipped a folio without folio number or scheme name")
            continue
        scheme_code = str(raw.get("scheme_code") or raw.get("isin") or scheme_name)[:64]
        amc_name = str(raw.get("amc_name") or "Unknown AMC")
        isin = raw.get("isin") or None
        category = raw.get("category") or None

        folio = MFFolio(
            user_id=user_id,
            pan=pan,
            folio_number=folio_number,
            amc_name=amc_name,
            amc_code=raw.get("amc_code"),
            scheme_name=scheme_name,
            scheme_code=scheme_code,
            isin=isin,
            advisor=raw.get("advisor"),
            registrar=raw.get("registrar"),
        )
        db.add(folio)
        db.flush()
        stored += 1

        transactions = _folio_transactions(raw)
        for txn in transactions:
            db.add(
                MFTransaction(
                    user_id=user_id,
                    folio_id=folio.id,
                    pan=pan,
                    folio_number=folio_number,
                    scheme_name=scheme_name,
                    scheme_code=scheme_code,
                    isin=isin,
                    amc_name=amc_name,
                    transaction_date=txn.date,
                    transaction_type=txn.type,
                    amount=txn.amount,
                    units=txn.units,
                    nav=txn.nav,
                    balance_units=txn.balance_units,
                    description=txn.description,
                    dividend_rate=txn.dividend_rate,
                )
            )
        txn_count += len(transactions)

        summary = summarize_transactions(transactions)
        current_nav = _optional_float(raw.get("current_nav"))
        current_value = summary.total_units * current_nav if current_nav else None
        absolute_return = (
            current_value - summary.invested_value if current_value is not None else None
        )
        absolute_return_percent = (
            absolute_return / summary.invested_value * 100.0
            if absolute_return is not None and summary.invested_value > 0
            else None
        )
        rate = xirr(
            scheme_cashflows(transactions, current_value=current_value or 0.0, as_of=as_of)
        )

        db.add(
            MFHoldingSummary(
                user_id=user_id,
                folio_id=folio.id,
                pan=pan,
                folio_number=folio_number,
                scheme_name=scheme_name,
                scheme_code=scheme_code,
                isin=isin,
                amc_name=amc_name,
                category=category,
                total_units=summary.total_units,
                current_nav=current_nav,
                current_value=current_value,
                invested_value=summary.invested_value,
                total_purchase_units=summary.total_purchase_units,
                total_redemption_units=summary.total_redemption_units,
                total_dividend_amount=summary.total_dividend_amount,
                avg_nav=summary.avg_nav,
                xirr=rate * 100.0 if rate is not None else None,
                absolute_return=absolute_return,
                absolute_return_percent=absolute_return_percent,
                first_investment_date=summary.first_investment_date,
                last_transaction_date=summary.last_transaction_date,
            )
        )

        scheme = db.get(MFScheme, scheme_code)
        if scheme is None:
            scheme = MFScheme(scheme_code=scheme_code, scheme_name=scheme_name, amc_name=amc_name)
            db.add(scheme)
        scheme.scheme_name = scheme_name
        scheme.amc_name = amc_name
        scheme.amc_code = raw.get("amc_code") or scheme.amc_code
        scheme.isin = isin or scheme.isin
        scheme.category = category or scheme.category
        scheme.sub_category = raw.get("sub_category") or scheme.sub_category
        scheme.scheme_type = raw.get("scheme_type") or scheme.scheme_type
        if current_nav:
            scheme.current_nav = current_nav
            scheme.nav_date = _parse_date(raw["nav_date"]) if raw.get("nav_date") else as_of
        schemes.add(scheme_code)

    db.flush()
    return stored, len(schemes), txn_count, warnings


def _ledger_rows(db: Session, *, user_id: int) -> List[NormalizedHolding]:
    rows = (
        db.query(MFHoldingSummary)
        .filter(MFHoldingSummary.user_id == user_id, MFHoldingSummary.total_units > 0)
        .all()
    )
    holdings: List[NormalizedHolding] = []
    for row in rows:
        invested = row.invested_value or 0.0
        units = row.total_units or 0.0
        avg_price = invested / units if units > 0 and invested > 0 else 0.0
        holdings.append(
            NormalizedHolding(
                symbol=row.scheme_code[:64],
                name=row.scheme_name,
                type="Mutual Fund",
                sector=guess_sector(row.scheme_name, asset_type="Mutual Fund"),
                quantity=units,
                avg_price=avg_price,
                ltp=row.current_nav or avg_price,
                exchange="MF",
                source=MF_SOURCE,
                isin=row.isin,
                xirr=row.xirr,
            )
        )
    return holdings


def fetch_cas(
    db: Session,
    client: MFCentralClient,
    *,
    user_id: int,
    otp_reference: Optional[str] = None,
    sync_id: Optional[int] = None,
    as_of: Optional[date] = None,
) -> FetchResult:
    """Phase 3. Pull the statement and atomically replace MF holdings."""

    sync = _find_sync(db, user_id=user_id, sync_id=sync_id, otp_reference=otp_reference)
    if sync is None:
        raise ProtocolError("No OTP request found. Request an OTP first.")
    if sync.sync_status not in {MF_STATUS_VERIFIED, MF_STATUS_SYNCING}:
        raise ProtocolError("OTP not verified. Verify the OTP before fetching the statement.")
    assert sync.otp_reference is not None

    sync.sync_status = MF_STATUS_SYNCING
    sync.error_message = None
    db.commit()

    try:
        cas = client.fetch_cas(
            otp_reference=sync.otp_reference,
            time_period=sync.time_period,
            updated_till=sync.updated_till.isoformat() if sync.updated_till else None,
        )
    except ReferenceExpiredError as exc:
        sync.sync_status = MF_STATUS_FAILED
        sync.otp_reference = None
        sync.error_message = str(exc)
        db.commit()
        append_sync_log(
            db, user_id=user_id, source=MF_SOURCE, status=SYNC_STATUS_FAILURE, error_message=str(exc)
        )
        raise
    except ConnectorError as exc:
        sync.sync_status = MF_STATUS_VERIFIED
        sync.error_message = str(exc)
        db.commit()
        append_sync_log(
            db, user_id=user_id, source=MF_SOURCE, status=SYNC_STATUS_FAILURE, error_message=str(exc)
        )
        raise

    day = as_of or ist_date()
    try:
        folios, schemes, txns, warnings = _replace_mf_tables(
            db, user_id=user_id, pan=sync.pan, cas=cas, as_of=day
        )
        holdings = _ledger_rows(db, user_id=user_id)
        count = replace_source_holdings(
            db, user_id=user_id, source=MF_SOURCE, holdings=holdings, commit=False
        )
        sync.sync_status = MF_STATUS_COMPLETED
        sync.last_synced_at = utc_now()
        db.commit()
    except (ValueError, KeyError, TypeError, AttributeError, IntegrityError) as exc:
        db.rollback()
        sync = db.get(MFCASSync, sync.id)  # type: ignore[assignment]
        assert sync is not None
        sync.sync_status = MF_STATUS_VERIFIED
        sync.error_message = f"Malformed statement: {exc}"
        db.commit()
        append_sync_log(
            db,
            user_id=user_id,
            source=MF_SOURCE,
            status=SYNC_STATUS_FAILURE,
            error_message=sync.error_message,
        )
        raise ProtocolError(sync.error_message) from exc

    append_sync_log(
        db, user_id=user_id, source=MF_SOURCE, status=SYNC_STATUS_SUCCESS, holdings_count=count
    )
    db.refresh(sync)
    logger.info(
        "MF Central statement synced",
        extra={
            "extra": {
                "user_id": user_id,
                "sync_id": sync.id,
                "folios": folios,
                "holdings_count": count,
            }
        },
    )
    return FetchResult(
        sync=sync,
        folios_count=folios,
        schemes_count=schemes,
        transactions_count=txns,
        holdings_count=count,
        warnings=warnings,
    )


def mf_client_from_settings(settings: Settings) -> MFCentralClient:
    return MFCentralClient.from_settings(settings)


def list_mf_holdings(db: Session, *, user_id: int) -> List[MFHoldingSummary]:
    return (
        db.query(MFHoldingSummary)
        .filter(MFHoldingSummary.user_id == user_id)
        .order_by(MFHoldingSummary.current_value.desc(), MFHoldingSummary.id)
        .all()
    )


__all__ = [
    "MF_SOURCE",
    "FetchResult",
    "normalize_pan",
    "latest_sync",
    "request_otp",
    "verify_otp",
    "fetch_cas",
    "mf_client_from_settings",
    "list_mf_holdings",
]
