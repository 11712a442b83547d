from __future__ import annotations

import io
import os

import pytest
from openpyxl import Workbook

from app.core.config import get_settings
from app.core.errors import ProtocolError, UploadValidationError
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.models import Holding, SyncLog, User
from app.services.file_import import (
    find_header,
    import_holdings_file,
    parse_rows,
    read_rows,
    validate_upload,
)
from app.services.holdings_normalizer import NormalizedHolding
from app.services.ledger import replace_source_holdings
from app.services.upload_progress import UploadProgressTracker


def setup_module() -> None:  # type: ignore[override]
    os.environ["PB_CRYPTO_KEY"] = "test-file-import"
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


def _csv(lines: list[str]) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


def _fifty_rows_three_malformed() -> bytes:
    lines = ["Symbol,Name,Quantity,Avg Price,LTP"]
    for i in range(50):
        if i == 5:
            lines.append(f",Company {i},10,100,110")
        elif i == 17:
            lines.append(f"SYM{i},Company {i},abc,100,110")
        elif i == 33:
            lines.append(f"SYM{i},Company {i},0,100,110")
        else:
            lines.append(f"SYM{i},Company {i},{i + 1},\"1,{i:03d}.50\",1200")
    return _csv(lines)


def test_validate_upload_rejects_empty_large_and_unknown_files() -> None:
    with pytest.raises(UploadValidationError, match="empty"):
        validate_upload("holdings.csv", 0)
    with pytest.raises(UploadValidationError, match="too large"):
        validate_upload("holdings.csv", 11 * 1024 * 1024)
    with pytest.raises(UploadValidationError, match="Unsupported file type"):
        validate_upload("holdings.pdf", 100)
    with pytest.raises(UploadValidationError, match=r"\.xls workbooks are not supported"):
        validate_upload("holdings.xls", 100)
    assert validate_upload("Holdings.XLSX", 100) == "xlsx"
    assert validate_upload("holdings.csv", 100) == "csv"


def test_empty_file_fails_validation_without_touching_ledger() -> None:
    settings = get_settings()
    user_id = _create_user("upload-empty")
    tracker = UploadProgressTracker()
    with SessionLocal() as db:
        replace_source_holdings(
            db,
            user_id=user_id,
            source="Spreadsheet",
            holdings=[NormalizedHolding(symbol="KEEP", name="Keep", quantity=1, avg_price=1, ltp=1)],
        )
        with pytest.raises(UploadValidationError):
            import_holdings_file(
                db,
                settings,
                user_id=user_id,
                filename="holdings.csv",
                content=b"",
                tracker=tracker,
            )

        assert tracker.has_error
        assert tracker.current.error == "File is empty"
        assert [h.symbol for h in db.query(Holding).filter(Holding.user_id == user_id)] == ["KEEP"]
        assert db.query(SyncLog).filter(SyncLog.user_id == user_id).count() == 0


def test_malformed_rows_are_skipped_and_reported_as_partial() -> None:
    settings = get_settings()
    user_id = _create_user("upload-scenario-b")
    tracker = UploadProgressTracker()
    with SessionLocal() as db:
        outcome = import_holdings_file(
            db,
            settings,
            user_id=user_id,
            filename="zerodha_holdings.csv",
            content=_fifty_rows_three_malformed(),
            source="Zerodha Console",
            tracker=tracker,
        )

        assert outcome.status == "partial"
        assert outcome.total_rows == 50
        assert outcome.valid_holdings == 47
        assert outcome.skipped_count == 3
        assert [(s.row, s.reason) for s in outcome.skipped] == [
            (7, "Missing symbol"),
            (19, "Invalid quantity"),
            (35, "Invalid quantity"),
        ]
        assert outcome.warnings == ["Skipped 3 malformed row(s)"]

        rows = (
            db.query(Holding)
            .filter(Holding.user_id == user_id, Holding.source == "Zerodha Console")
            .all()
        )
        assert len(rows) == 47
        sym1 = next(r for r in rows if r.symbol == "SYM1")
        assert sym1.quantity == 2
        assert sym1.avg_price == pytest.approx(1001.5)

        log = db.query(SyncLog).filter(SyncLog.user_id == user_id).one()
        assert (log.status, log.holdings_count) == ("success", 47)

    assert [p["step"] for p in outcome.progress] == [
        "validating",
        "uploading",
        "parsing",
        "processing",
        "syncing",
        "reconciling",
        "partial",
    ]
    assert tracker.is_complete
    assert tracker.has_warnings


def test_header_is_found_below_preamble_rows() -> None:
    rows = read_rows(
        _csv(
            [
                "Client ID,AB1234",
                "",
                "Stock Symbol,Company Name,ISIN,Qty,Average Price,Current Price",
                "INFY,Infosys Ltd,INE009A01021,10,1400,1500",
            ]
        ),
        "csv",
    )
    idx, columns = find_header(rows)
    assert idx == 2
    assert columns["symbol"] == 0
    assert columns["name"] == 1
    assert columns["isin"] == 2
    assert columns["quantity"] == 3
    assert columns["avg_price"] == 4
    assert columns["ltp"] == 5

    parsed = parse_rows(rows, source="Upload")
    assert parsed.holdings[0].isin == "INE009A01021"
    assert parsed.holdings[0].sector == "IT"


def test_missing_header_is_rejected() -> None:
    with pytest.raises(ProtocolError, match="header"):
        parse_rows([["foo", "bar"], ["1", "2"]], source="Upload")


def test_totals_row_is_reconciled_against_parsed_holdings() -> None:
    header = "Symbol,Name,Quantity,Avg Price,LTP"
    matched = parse_rows(
        read_rows(
            _csv([header, "INFY,Infosys,10,1400,1500", "TCS,TCS,5,3000,3300", "Total,,15,,"]),
            "csv",
        ),
        source="Upload",
    )
    assert matched.reconciliation is not None
    assert matched.reconciliation.field == "quantity"
    assert matched.reconciliation.matched is True
    assert matched.warnings == []
    assert matched.total_rows == 2

    mismatched = parse_rows(
        read_rows(
            _csv([header, "INFY,Infosys,10,1400,1500", "TCS,TCS,5,3000,3300", "Total:,,20,,"]),
            "csv",
        ),
        source="Upload",
    )
    assert mismatched.reconciliation is not None
    assert mismatched.reconciliation.matched is False
    assert mismatched.reconciliation.difference == pytest.approx(-5.0)
    assert "Totals row mismatch" in mismatched.warnings[0]


def test_clean_file_completes_and_replaces_previous_upload() -> None:
    settings = get_settings()
    user_id = _create_user("upload-replace")
    header = "Symbol,Name,Quantity,Avg Price,LTP"
    with SessionLocal() as db:
        first = import_holdings_file(
            db,
            settings,
            user_id=user_id,
            filename="groww.csv",
            content=_csv([header, "INFY,Infosys,10,1400,1500", "ITC,ITC Ltd,100,400,450"]),
            source="Groww",
        )
        assert first.status == "complete"

        second = import_holdings_file(
            db,
            settings,
            user_id=user_id,
            filename="groww.csv",
            content=_csv([header, "WIPRO,Wipro,20,400,420"]),
            source="Groww",
        )
        assert second.valid_holdings == 1
        symbols = [h.symbol for h in db.query(Holding).filter(Holding.user_id == user_id)]
        assert symbols == ["WIPRO"]


def test_xlsx_holdings_sheet_is_preferred() -> None:
    wb = Workbook()
    summary = wb.active
    summary.title = "Summary"
    summary.append(["Total value", 41000])
    sheet = wb.create_sheet("Holdings")
    sheet.append(["Holdings as on 01-Jun-2025", None, None, None, None])
    sheet.append(["Instrument", "Qty.", "Avg. cost", "LTP", "Cur. val"])
    sheet.append(["INFY", 10, 1400, 1500, 15000])
    sheet.append(["NIFTYBEES", 100, 250.5, 260, 26000])
    buf = io.BytesIO()
    wb.save(buf)

    settings = get_settings()
    user_id = _create_user("upload-xlsx")
    with SessionLocal() as db:
        outcome = import_holdings_file(
            db,
            settings,
            user_id=user_id,
            filename="holdings.xlsx",
            content=buf.getvalue(),
            source="Kite Console",
        )
        assert outcome.status == "complete"
        assert outcome.valid_holdings == 2
        etf = (
            db.query(Holding)
            .filter(Holding.user_id == user_id, Holding.symbol == "NIFTYBEES")
            .one()
        )
        assert etf.type == "ETF"
        assert etf.avg_price == pytest.approx(250.5)
        assert etf.ltp == pytest.approx(260.0)


def test_corrupt_spreadsheet_fails_and_is_logged() -> None:
    settings = get_settings()
    user_id = _create_user("upload-corrupt")
    tracker = UploadProgressTracker()
    with SessionLocal() as db:
        with pytest.raises(ProtocolError, match="Unreadable spreadsheet"):
            import_holdings_file(
                db,
                settings,
                user_id=user_id,
                filename="holdings.xlsx",
                content=b"definitely not a zip archive",
                source="Broken",
                tracker=tracker,
            )
        log = db.query(SyncLog).filter(SyncLog.user_id == user_id).one()
        assert (log.source, log.status) == ("Broken", "failure")
    assert tracker.current.step == "error"


def test_unterminated_quote_in_csv_fails_and_is_logged() -> None:
    settings = get_settings()
    user_id = _create_user("upload-bad-csv")
    tracker = UploadProgressTracker()
    content = b'Symbol,Quantity\nINFY,10\n"' + b"x" * 200_000
    with SessionLocal() as db:
        with pytest.raises(ProtocolError, match="Unreadable CSV"):
            import_holdings_file(
                db,
                settings,
                user_id=user_id,
                filename="holdings.csv",
                content=content,
                source="Broken CSV",
                tracker=tracker,
            )
        log = db.query(SyncLog).filter(SyncLog.user_id == user_id).one()
        assert (log.source, log.status) == ("Broken CSV", "failure")
        assert db.query(Holding).filter(Holding.user_id == user_id).count() == 0
    assert tracker.current.step == "error"
