from __future__ import annotations

import os
from datetime import date
from typing import Any, Dict, List, Optional

import pytest

from app.core.config import get_settings
from app.core.errors import ProtocolError, ReferenceExpiredError, TransientError
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.models import Holding, MFCASSync, MFFolio, MFHoldingSummary, MFTransaction, SyncLog, User
from app.services.holdings_normalizer import NormalizedHolding
from app.services.ledger import replace_source_holdings
from app.services.mf_cas import MF_SOURCE, fetch_cas, request_otp, verify_otp

PAN = "ABCDE1234F"
VALID_OTP = "123456"


def _statement() -> Dict[str, Any]:
    return {
        "folios": [
            {
                "folio_number": "F-1001",
                "scheme_name": "HDFC Flexi Cap Fund - Direct Growth",
                "scheme_code": "HDFC-FC",
                "isin": "INF179K01UT0",
                "amc_name": "HDFC Mutual Fund",
                "category": "Equity",
                "current_nav": 120.0,
                "transactions": [
                    {
                        "date": "2023-01-02",
                        "type": "purchase",
                        "amount": 10000,
                        "units": 100,
                        "nav": 100,
                        "balance_units": 100,
                    },
                    {
                        "date": "2024-01-02",
                        "type": "sip",
                        "amount": 5500,
                        "units": 50,
                        "nav": 110,
                        "balance_units": 150,
                    },
                ],
            },
            {
                "folio_number": "F-2002",
                "scheme_name": "Axis Liquid Fund",
                "scheme_code": "AXIS-LQ",
                "amc_name": "Axis Mutual Fund",
                "category": "Debt",
                "current_nav": 2500.0,
                "transactions": [
                    {"date": "01-Mar-2024", "type": "purchase", "amount": 50000, "units": 20},
                ],
            },
        ]
    }


class FakeMFClient:
    def __init__(
        self,
        statement: Optional[Dict[str, Any]] = None,
        *,
        verify_error: Optional[Exception] = None,
        fetch_error: Optional[Exception] = None,
    ) -> None:
        self.statement = statement if statement is not None else _statement()
        self.verify_error = verify_error
        self.fetch_error = fetch_error
        self.requests: List[Dict[str, Any]] = []
        self.fetch_calls = 0
        self.closed = False

    def request_otp(
        self,
        *,
        pan: str,
        otp_method: str,
        phone: Optional[str] = None,
        email: Optional[str] = None,
    ) -> str:
        self.requests.append({"pan": pan, "otp_method": otp_method, "phone": phone})
        return f"ref-{len(self.requests)}"

    def verify_otp(self, *, otp: str, otp_reference: str) -> None:
        if self.verify_error is not None:
            raise self.verify_error
        if otp != VALID_OTP:
            raise ProtocolError("Invalid OTP")

    def fetch_cas(
        self,
        *,
        otp_reference: str,
        time_period: Optional[str] = None,
        updated_till: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.statement

    def close(self) -> None:
        self.closed = True


def setup_module() -> None:  # type: ignore[override]
    os.environ["PB_CRYPTO_KEY"] = "test-mf-cas"
    get_settings.cache_clear()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


def _create_user(username: str) -> int:
    with SessionLocal() as db:
        user = User(username=username)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user.id


def test_fetch_before_verification_is_rejected() -> None:
    user_id = _create_user("mf-out-of-order")
    client = FakeMFClient()
    with SessionLocal() as db:
        with pytest.raises(ProtocolError, match="Request an OTP first"):
            fetch_cas(db, client, user_id=user_id, sync_id=12345)

        sync = request_otp(db, client, user_id=user_id, pan=PAN, phone="9999999999")
        with pytest.raises(ProtocolError, match="OTP not verified"):
            fetch_cas(db, client, user_id=user_id, sync_id=sync.id)

        assert client.fetch_calls == 0
        assert db.get(MFCASSync, sync.id).sync_status == "otp_sent"  # type: ignore[union-attr]


def test_request_verify_fetch_imports_statement() -> None:
    user_id = _create_user("mf-happy")
    client = FakeMFClient()
    with SessionLocal() as db:
        sync = request_otp(db, client, user_id=user_id, pan=" abcde1234f ", phone="9999999999")
        assert sync.pan == PAN
        assert sync.sync_status == "otp_sent"
        assert sync.otp_reference == "ref-1"

        sync = verify_otp(db, client, user_id=user_id, otp=VALID_OTP, otp_reference="ref-1")
        assert sync.sync_status == "verified"

        result = fetch_cas(db, client, user_id=user_id, sync_id=sync.id, as_of=date(2025, 1, 2))
        assert result.sync.sync_status == "completed"
        assert result.sync.last_synced_at is not None
        assert result.folios_count == 2
        assert result.schemes_count == 2
        assert result.transactions_count == 3
        assert result.holdings_count == 2

        summaries = {
            s.scheme_code: s
            for s in db.query(MFHoldingSummary).filter(MFHoldingSummary.user_id == user_id)
        }
        flexi = summaries["HDFC-FC"]
        assert flexi.total_units == pytest.approx(150.0)
        assert flexi.invested_value == pytest.approx(15500.0)
        assert flexi.current_value == pytest.approx(18000.0)
        assert flexi.absolute_return == pytest.approx(2500.0)
        assert flexi.xirr is not None and flexi.xirr > 0
        # No running balance reported: units come from the purchases.
        assert summaries["AXIS-LQ"].total_units == pytest.approx(20.0)

        holdings = {
            h.symbol: h
            for h in db.query(Holding).filter(
                Holding.user_id == user_id, Holding.source == MF_SOURCE
            )
        }
        assert set(holdings) == {"HDFC-FC", "AXIS-LQ"}
        assert holdings["HDFC-FC"].type == "Mutual Fund"
        assert holdings["HDFC-FC"].avg_price == pytest.approx(15500.0 / 150.0)
        assert holdings["HDFC-FC"].ltp == pytest.approx(120.0)

        last_log = (
            db.query(SyncLog)
            .filter(SyncLog.user_id == user_id)
            .order_by(SyncLog.id.desc())
            .first()
        )
        assert last_log is not None
        assert (last_log.source, last_log.status, last_log.holdings_count) == (
            MF_SOURCE,
            "success",
            2,
        )


def test_rejected_otp_keeps_otp_sent_and_allows_retry() -> None:
    user_id = _create_user("mf-wrong-otp")
    client = FakeMFClient()
    with SessionLocal() as db:
        sync = request_otp(db, client, user_id=user_id, pan=PAN, phone="9999999999")

        with pytest.raises(ProtocolError):
            verify_otp(db, client, user_id=user_id, otp="000000", sync_id=sync.id)
        refreshed = db.get(MFCASSync, sync.id)
        assert refreshed is not None
        assert refreshed.sync_status == "otp_sent"
        assert refreshed.otp_reference == "ref-1"
        assert "Invalid OTP" in (refreshed.error_message or "")

        verified = verify_otp(db, client, user_id=user_id, otp=VALID_OTP, sync_id=sync.id)
        assert verified.sync_status == "verified"
        assert verified.error_message is None


def test_expired_reference_forces_new_otp_request() -> None:
    user_id = _create_user("mf-expired")
    client = FakeMFClient(verify_error=ReferenceExpiredError("Reference expired"))
    with SessionLocal() as db:
        sync = request_otp(db, client, user_id=user_id, pan=PAN, phone="9999999999")

        with pytest.raises(ReferenceExpiredError):
            verify_otp(db, client, user_id=user_id, otp=VALID_OTP, sync_id=sync.id)
        expired = db.get(MFCASSync, sync.id)
        assert expired is not None
        assert expired.sync_status == "failed"
        assert expired.otp_reference is None

        client.verify_error = None
        with pytest.raises(ReferenceExpiredError):
            verify_otp(db, client, user_id=user_id, otp=VALID_OTP, sync_id=sync.id)

        restarted = request_otp(db, client, user_id=user_id, pan=PAN, phone="9999999999")
        assert restarted.id == sync.id
        assert restarted.sync_status == "otp_sent"
        assert restarted.otp_reference == "ref-2"


def test_malformed_statement_leaves_previous_holdings() -> None:
    user_id = _create_user("mf-malformed")
    client = FakeMFClient(statement={"folios": "not-a-list"})
    with SessionLocal() as db:
        replace_source_holdings(
            db,
            user_id=user_id,
            source=MF_SOURCE,
            holdings=[
                NormalizedHolding(
                    symbol="OLD-SCHEME",
                    name="Old Scheme",
                    type="Mutual Fund",
                    quantity=10,
                    avg_price=10,
                    ltp=11,
                    source=MF_SOURCE,
                )
            ],
        )
        sync = request_otp(db, client, user_id=user_id, pan=PAN, phone="9999999999")
        verify_otp(db, client, user_id=user_id, otp=VALID_OTP, sync_id=sync.id)

        with pytest.raises(ProtocolError, match="Malformed statement"):
            fetch_cas(db, client, user_id=user_id, sync_id=sync.id)

        after = db.get(MFCASSync, sync.id)
        assert after is not None
        assert after.sync_status == "verified"
        symbols = [
            h.symbol for h in db.query(Holding).filter(Holding.user_id == user_id).all()
        ]
        assert symbols == ["OLD-SCHEME"]
        assert db.query(MFFolio).filter(MFFolio.user_id == user_id).count() == 0
        assert db.query(MFTransaction).filter(MFTransaction.user_id == user_id).count() == 0


def test_transient_fetch_failure_can_be_retried() -> None:
    user_id = _create_user("mf-transient")
    client = FakeMFClient(fetch_error=TransientError("provider timeout"))
    with SessionLocal() as db:
        sync = request_otp(db, client, user_id=user_id, pan=PAN, email="a@b.in", otp_method="email")
        verify_otp(db, client, user_id=user_id, otp=VALID_OTP, sync_id=sync.id)

        with pytest.raises(TransientError):
            fetch_cas(db, client, user_id=user_id, sync_id=sync.id)
        assert db.get(MFCASSync, sync.id).sync_status == "verified"  # type: ignore[union-attr]

        client.fetch_error = None
        result = fetch_cas(db, client, user_id=user_id, sync_id=sync.id)
        assert result.sync.sync_status == "completed"


def test_request_otp_validates_inputs() -> None:
    user_id = _create_user("mf-validation")
    client = FakeMFClient()
    with SessionLocal() as db:
        with pytest.raises(ProtocolError, match="Invalid PAN"):
            request_otp(db, client, user_id=user_id, pan="12345", phone="9999999999")
        with pytest.raises(ProtocolError, match="Phone number is required"):
            request_otp(db, client, user_id=user_id, pan=PAN)
        with pytest.raises(ProtocolError, match="otp_method"):
            request_otp(db, client, user_id=user_id, pan=PAN, otp_method="pigeon")
    assert client.requests == []


def test_verify_before_otp_request_is_rejected() -> None:
    user_id = _create_user("mf-verify-first")
    client = FakeMFClient()
    with SessionLocal() as db:
        with pytest.raises(ProtocolError, match="Request an OTP first"):
            verify_otp(db, client, user_id=user_id, otp=VALID_OTP)
        with pytest.raises(ProtocolError, match="Request an OTP first"):
            verify_otp(db, client, user_id=user_id, otp=VALID_OTP, otp_reference="ref-404")
        assert db.query(MFCASSync).filter(MFCASSync.user_id == user_id).count() == 0
    assert client.fetch_calls == 0


def test_second_verify_after_success_is_a_no_op() -> None:
    user_id = _create_user("mf-verify-twice")
    client = FakeMFClient()
    with SessionLocal() as db:
        sync = request_otp(db, client, user_id=user_id, pan=PAN, phone="9999999999")
        verify_otp(db, client, user_id=user_id, otp=VALID_OTP, sync_id=sync.id)

        # A different code is not checked again once the sync is verified.
        again = verify_otp(db, client, user_id=user_id, otp="000000", sync_id=sync.id)
        assert again.id == sync.id
        assert again.sync_status == "verified"
        assert again.error_message is None
        assert client.fetch_calls == 0
        assert db.get(MFCASSync, sync.id).sync_status == "verified"  # type: ignore[union-attr]
