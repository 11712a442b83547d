"""File connector: spreadsheet holdings import.

validate -> parse -> process -> sync -> reconcile. Malformed rows are
skipped and counted; the remaining rows fully replace the source's holdings.
Validation failures and unreadable files end in ``error`` without touching
the ledger.
"""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from openpyxl import load_workbook
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.errors import ProtocolError, UploadValidationError
from app.models.sync_log import SYNC_STATUS_FAILURE, SYNC_STATUS_SUCCESS
from app.services.holdings_normalizer import (
    NormalizedHolding,
    coerce_number,
    guess_asset_type,
    guess_exchange,
    guess_sector,
    parse_number,
)
from app.services.ledger import replace_source_holdings
from app.services.sync_logs import append_sync_log
from app.services.upload_progress import (
    STEP_COMPLETE,
    STEP_PARSING,
    STEP_PARTIAL,
    STEP_PROCESSING,
    STEP_RECONCILING,
    STEP_SYNCING,
    STEP_UPLOADING,
    STEP_VALIDATING,
    UploadProgressTracker,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10 MiB
DEFAULT_MAX_ROWS = 5000
ALLOWED_EXTENSIONS = {".xlsx": "xlsx", ".xlsm": "xlsx", ".csv": "csv"}
LEGACY_EXCEL_EXTENSION = ".xls"
HEADER_SCAN_ROWS = 15
RECONCILIATION_TOLERANCE = 0.01
DEFAULT_UPLOAD_SOURCE = "Spreadsheet"

COLUMN_PATTERNS: Dict[str, tuple[str, ...]] = {
    "symbol": ("symbol", "scrip", "ticker", "instrument", "security", "stock"),
    "name": ("name", "company", "scheme"),
    "quantity": ("qty", "quantity", "units", "shares"),
    "avg_price": ("avg", "average", "buy price", "purchase price", "cost"),
    "ltp": ("ltp", "current price", "market price", "last price", "close", "nav"),
    "isin": ("isin",),
    "type": ("asset type", "asset class", "category", "type"),
    "invested": ("invested", "investment", "buy value", "cost value"),
    "current_value": ("current value", "market value", "present value"),
}
# Value and quantity columns are claimed before the looser price patterns.
_CLAIM_ORDER = (
    "isin",
    "invested",
    "current_value",
    "quantity",
    "avg_price",
    "ltp",
    "symbol",
    "name",
    "type",
)


@dataclass
class SkippedRow:
    row: int
    reason: str


@dataclass
class Reconciliation:
    matched: bool
    field: str
    sheet_total: float
    parsed_total: float
    difference: float
    tolerance: float = RECONCILIATION_TOLERANCE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "field": self.field,
            "sheet_total": self.sheet_total,
            "parsed_total": self.parsed_total,
            "difference": self.difference,
            "tolerance": self.tolerance,
        }


@dataclass
class ParseResult:
    holdings: List[NormalizedHolding] = field(default_factory=list)
    skipped: List[SkippedRow] = field(default_factory=list)
    total_rows: int = 0
    header_row: int = -1
    reconciliation: Optional[Reconciliation] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class ImportOutcome:
    status: str
    source: str
    total_rows: int
    valid_holdings: int
    skipped: List[SkippedRow]
    warnings: List[str]
    reconciliation: Optional[Reconciliation]
    progress: List[Dict[str, Any]]

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def validate_upload(filename: str, size: int, *, max_bytes: int = DEFAULT_MAX_BYTES) -> str:
    """Local checks run before any upload; returns the file kind."""

    if size <= 0:
        raise UploadValidationError("File is empty")
    if size > max_bytes:
        raise UploadValidationError(
            f"File too large (max {max_bytes // (1024 * 1024)} MB)"
        )
    ext = Path(filename or "").suffix.lower()
    kind = ALLOWED_EXTENSIONS.get(ext)
    if ext == LEGACY_EXCEL_EXTENSION:
        raise UploadValidationError(
            "Legacy .xls workbooks are not supported. Save the file as .xlsx or .csv and upload again."
        )
    if kind is None:
        allowed = ", ".join(sorted(ALLOWED_EXTENSIONS))
        raise UploadValidationError(f"Unsupported file type '{ext or filename}'. Allowed: {allowed}")
    return kind


def _read_csv_rows(content: bytes) -> List[List[Any]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = content.decode("latin-1")
    try:
        return [list(row) for row in csv.reader(io.StringIO(text))]
    except csv.Error as exc:
        raise ProtocolError(f"Unreadable CSV: {exc}") from exc


def _read_xlsx_rows(content: bytes) -> List[List[Any]]:
    try:
        wb = load_workbook(filename=io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        # openpyxl raises a variety of zip/xml errors for corrupt input.
        raise ProtocolError(f"Unreadable spreadsheet: {exc}") from exc
    try:
        sheets = list(wb.sheetnames or [])
        if not sheets:
            return []
        sheet_name = next((s for s in sheets if "holding" in s.lower()), sheets[0])
        ws = wb[sheet_name]
        return [list(row) for row in ws.iter_rows(values_only=True)]
    finally:
        wb.close()


def read_rows(content: bytes, kind: str) -> List[List[Any]]:
    if kind == "csv":
        return _read_csv_rows(content)
    return _read_xlsx_rows(content)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def find_header(rows: Sequence[Sequence[Any]]) -> tuple[int, Dict[str, int]]:
    """Locate the header among the first rows and map columns to fields."""

    for idx, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        cells = [_cell_text(c).lower() for c in row]
        if not any(cells):
            continue
        joined = " ".join(cells)
        has_symbol = any(
            p in joined for p in COLUMN_PATTERNS["symbol"] + COLUMN_PATTERNS["name"]
        )
        has_qty = any(p in joined for p in COLUMN_PATTERNS["quantity"])
        if not (has_symbol and has_qty):
            continue

        columns: Dict[str, int] = {}
        claimed: set[int] = set()
        for key in _CLAIM_ORDER:
            # Earlier patterns win, so "Symbol" beats "Stock Name" for symbol.
            match = next(
                (
                    col
                    for pattern in COLUMN_PATTERNS[key]
                    for col, cell in enumerate(cells)
                    if col not in claimed and cell and pattern in cell
                ),
                None,
            )
            if match is not None:
                columns[key] = match
                claimed.add(match)
        if "symbol" not in columns and "name" in columns:
            columns["symbol"] = columns["name"]
        if "symbol" not in columns or "quantity" not in columns:
            continue
        columns.setdefault("name", columns["symbol"])
        return idx, columns

    raise ProtocolError(
        "Could not find header row. Expected columns: Symbol, Name, Quantity, Avg Price, LTP"
    )


def _is_totals_label(text: str) -> bool:
    label = text.rstrip(":").strip()
    return label in {"total", "totals", "grand total", "net total"} or label.startswith(
        ("total ", "grand total ")
    )


def _get(row: Sequence[Any], columns: Dict[str, int], key: str) -> Any:
    col = columns.get(key)
    if col is None or col >= len(row):
        return None
    return row[col]


def parse_rows(
    rows: Sequence[Sequence[Any]],
    *,
    source: str,
    max_rows: int = DEFAULT_MAX_ROWS,
) -> ParseResult:
    header_idx, columns = find_header(rows)
    data_rows = rows[header_idx + 1 :]
    if len(data_rows) > max_rows:
        raise ProtocolError(f"Too many rows. Maximum {max_rows} allowed")

    result = ParseResult(header_row=header_idx)
    totals: Optional[Sequence[Any]] = None

    for offset, row in enumerate(data_rows):
        line = header_idx + offset + 2  # 1-based sheet row
        cells = [_cell_text(c) for c in row]
        if not any(cells):
            continue
        first = next(c for c in cells if c).lower()
        if _is_totals_label(first):
            totals = row
            continue

        result.total_rows += 1
        symbol = _cell_text(_get(row, columns, "symbol")).upper()[:64]
        if not symbol:
            result.skipped.append(SkippedRow(row=line, reason="Missing symbol"))
            continue

        quantity = parse_number(_get(row, columns, "quantity"))
        if quantity is None or quantity <= 0:
            result.skipped.append(SkippedRow(row=line, reason="Invalid quantity"))
            continue

        avg_price = coerce_number(_get(row, columns, "avg_price"))
        if avg_price < 0:
            result.skipped.append(SkippedRow(row=line, reason="Invalid average price"))
            continue
        ltp = coerce_number(_get(row, columns, "ltp"))
        if ltp <= 0:
            ltp = avg_price

        name = _cell_text(_get(row, columns, "name"))[:200] or symbol
        isin = _cell_text(_get(row, columns, "isin")).upper() or None
        type_hint = _cell_text(_get(row, columns, "type"))
        asset_type = guess_asset_type(name, symbol, isin=isin, type_hint=type_hint)
        result.holdings.append(
            NormalizedHolding(
                symbol=symbol,
                name=name,
                type=asset_type,
                sector=guess_sector(name, symbol, asset_type=asset_type),
                quantity=quantity,
                avg_price=round(avg_price, 4),
                ltp=round(ltp, 4),
                exchange=guess_exchange(asset_type, isin),
                source=source,
                isin=isin,
            )
        )

    if result.skipped:
        result.warnings.append(f"Skipped {len(result.skipped)} malformed row(s)")
    if totals is not None:
        result.reconciliation = reconcile_totals(totals, columns, result.holdings)
        if result.reconciliation is not None and not result.reconciliation.matched:
            rec = result.reconciliation
            result.warnings.append(
                f"Totals row mismatch on {rec.field}: sheet {rec.sheet_total:.2f} "
                f"vs parsed {rec.parsed_total:.2f}"
            )
    return result


def reconcile_totals(
    totals: Sequence[Any],
    columns: Dict[str, int],
    holdings: Sequence[NormalizedHolding],
) -> Optional[Reconciliation]:
    """Compare the sheet's own totals row against the parsed holdings."""

    candidates = (
        ("invested", lambda h: h.quantity * h.avg_price),
        ("current_value", lambda h: h.quantity * h.ltp),
        ("quantity", lambda h: h.quantity),
    )
    for key, value_of in candidates:
        sheet_total = parse_number(_get(totals, columns, key))
        if sheet_total is None:
            continue
        parsed_total = sum(value_of(h) for h in holdings)
        difference = parsed_total - sheet_total
        scale = max(abs(sheet_total), 1e-9)
        return Reconciliation(
            matched=abs(difference) / scale <= RECONCILIATION_TOLERANCE,
            field=key,
            sheet_total=sheet_total,
            parsed_total=parsed_total,
            difference=difference,
        )
    return None


def import_holdings_file(
    db: Session,
    settings: Settings,
    *,
    user_id: int,
    filename: str,
    content: bytes,
    source: str = DEFAULT_UPLOAD_SOURCE,
    tracker: Optional[UploadProgressTracker] = None,
) -> ImportOutcome:
    """Run the whole pipeline for one uploaded file.

    Raises ``UploadValidationError`` or ``ProtocolError`` for rejected files;
    the tracker is left at ``error`` and the ledger is untouched.
    """

    progress = tracker or UploadProgressTracker()
    source_name = (source or "").strip() or DEFAULT_UPLOAD_SOURCE
    try:
        progress.update(STEP_VALIDATING)
        kind = validate_upload(filename, len(content), max_bytes=settings.upload_max_bytes)
        progress.update(STEP_UPLOADING, details={"filename": filename, "size": len(content)})

        progress.update(STEP_PARSING)
        rows = read_rows(content, kind)
        if not rows:
            raise ProtocolError("File contains no data")
        parsed = parse_rows(rows, source=source_name, max_rows=settings.upload_max_rows)

        progress.update(
            STEP_PROCESSING,
            details={
                "total_rows": parsed.total_rows,
                "valid_holdings": len(parsed.holdings),
                "skipped_count": len(parsed.skipped),
            },
        )
        if not parsed.holdings:
            raise ProtocolError("No valid holdings found in file")
    except (UploadValidationError, ProtocolError) as exc:
        progress.fail(str(exc))
        if not isinstance(exc, UploadValidationError):
            append_sync_log(
                db,
                user_id=user_id,
                source=source_name,
                status=SYNC_STATUS_FAILURE,
                error_message=str(exc),
            )
        raise

    progress.update(STEP_SYNCING)
    count = replace_source_holdings(
        db, user_id=user_id, source=source_name, holdings=parsed.holdings
    )
    append_sync_log(
        db,
        user_id=user_id,
        source=source_name,
        status=SYNC_STATUS_SUCCESS,
        holdings_count=count,
    )

    progress.update(STEP_RECONCILING, warnings=list(parsed.warnings))
    final_step = STEP_COMPLETE if not parsed.warnings and not parsed.skipped else STEP_PARTIAL
    progress.update(
        final_step,
        details={
            "total_rows": parsed.total_rows,
            "valid_holdings": count,
            "skipped_count": len(parsed.skipped),
        },
    )

    logger.info(
        "Holdings file imported",
        extra={
            "extra": {
                "user_id": user_id,
                "source": source_name,
                "status": final_step,
                "holdings_count": count,
                "skipped_count": len(parsed.skipped),
            }
        },
    )
    return ImportOutcome(
        status=final_step,
        source=source_name,
        total_rows=parsed.total_rows,
        valid_holdings=count,
        skipped=parsed.skipped,
        warnings=parsed.warnings,
        reconciliation=parsed.reconciliation,
        progress=[p.to_dict() for p in progress.history],
    )


__all__ = [
    "DEFAULT_MAX_BYTES",
    "DEFAULT_MAX_ROWS",
    "ALLOWED_EXTENSIONS",
    "SkippedRow",
    "Reconciliation",
    "ParseResult",
    "ImportOutcome",
    "validate_upload",
    "read_rows",
    "find_header",
    "parse_rows",
    "reconcile_totals",
    "import_holdings_file",
]
