"""Canonical holding shape and the metrics derived from it.

Everything here is pure: no database or network access. Numeric fields are
coerced rather than validated so a malformed value from any source turns into
``0`` instead of an exception.
"""

from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass
from typing import Any, Mapping, Optional

ASSET_TYPES = (
    "Equity",
    "ETF",
    "SGB",
    "Commodity",
    "Index",
    "US Stock",
    "Mutual Fund",
    "Bond",
    "REIT",
    "NPS",
    "EPF",
    "PPF",
)

SECTORS = (
    "IT",
    "Banking",
    "Finance",
    "Power",
    "Auto",
    "Pharma",
    "FMCG",
    "Metals",
    "Telecom",
    "Infra",
    "Energy",
    "Commodity",
    "Index",
    "International",
    "Diversified",
    "Real Estate",
    "Consumer",
    "Chemicals",
    "Other",
)

RECOMMENDATION_TRIM = "TRIM / PROFIT"
RECOMMENDATION_RIDE = "RIDE TREND"
RECOMMENDATION_HOLD = "HOLD"
RECOMMENDATION_ACCUMULATE = "ACCUMULATE"
RECOMMENDATION_REVIEW = "REVIEW"

# (inclusive lower bound, label), checked top-down.
_RECOMMENDATION_BANDS: tuple[tuple[float, str], ...] = (
    (50.0, RECOMMENDATION_TRIM),
    (25.0, RECOMMENDATION_RIDE),
    (5.0, RECOMMENDATION_HOLD),
    (-10.0, RECOMMENDATION_ACCUMULATE),
)

_NUMBER_NOISE = re.compile(r"[₹$,\s]")
_PAREN_NEGATIVE = re.compile(r"^\((.+)\)$")


def parse_number(value: Any) -> Optional[float]:
    """Parse a numeric cell; ``None`` when it holds no usable number.

    Accepts numbers and strings such as ``"₹1,234.50"`` or ``"(12.5)"`` (a
    negative in accounting notation).
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
        return num if math.isfinite(num) else None
    text = _NUMBER_NOISE.sub("", str(value)).strip()
    if not text:
        return None
    text = _PAREN_NEGATIVE.sub(r"-\1", text)
    try:
        num = float(text)
    except ValueError:
        return None
    return num if math.isfinite(num) else None


def coerce_number(value: Any) -> float:
    """Best-effort float conversion; anything unusable becomes 0."""

    num = parse_number(value)
    return num if num is not None else 0.0


def coerce_non_negative(value: Any) -> float:
    return max(coerce_number(value), 0.0)


def recommendation_for(pnl_percent: float) -> str:
    for threshold, label in _RECOMMENDATION_BANDS:
        if pnl_percent >= threshold:
            return label
    return RECOMMENDATION_REVIEW


@dataclass
class NormalizedHolding:
    """A holding as every connector hands it to the ledger."""

    symbol: str
    name: str
    type: str = "Equity"
    sector: str = "Other"
    quantity: float = 0.0
    avg_price: float = 0.0
    ltp: float = 0.0
    exchange: str = "NSE"
    source: str = ""
    isin: Optional[str] = None
    xirr: Optional[float] = None

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EnrichedHolding:
    id: Optional[int]
    symbol: str
    name: str
    isin: Optional[str]
    type: str
    sector: str
    quantity: float
    avg_price: float
    ltp: float
    exchange: str
    source: str
    xirr: Optional[float]
    invested_value: float
    current_value: float
    pnl: float
    pnl_percent: float
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _field(raw: Any, name: str, default: Any = None) -> Any:
    if isinstance(raw, Mapping):
        return raw.get(name, default)
    return getattr(raw, name, default)


def enrich_holding(
    raw: Any,
    quotes: Optional[Mapping[str, float]] = None,
) -> EnrichedHolding:
    """Derive value, P&L and a recommendation for one persisted holding.

    ``raw`` may be a ``Holding`` row or a mapping with the same field names.
    A quote for the symbol wins over the persisted ``ltp``.
    """

    symbol = str(_field(raw, "symbol", "") or "")
    quantity = coerce_non_negative(_field(raw, "quantity"))
    avg_price = coerce_non_negative(_field(raw, "avg_price"))
    ltp = coerce_number(_field(raw, "ltp"))
    if quotes and symbol in quotes:
        quoted = coerce_number(quotes[symbol])
        if quoted > 0:
            ltp = quoted

    invested_value = quantity * avg_price
    current_value = quantity * ltp
    pnl = current_value - invested_value
    pnl_percent = (pnl / invested_value * 100.0) if invested_value > 0 else 0.0

    xirr_raw = _field(raw, "xirr")
    return EnrichedHolding(
        id=_field(raw, "id"),
        symbol=symbol,
        name=str(_field(raw, "name", "") or symbol),
        isin=_field(raw, "isin"),
        type=str(_field(raw, "type", "") or "Equity"),
        sector=str(_field(raw, "sector", "") or "Other"),
        quantity=quantity,
        avg_price=avg_price,
        ltp=ltp,
        exchange=str(_field(raw, "exchange", "") or "NSE"),
        source=str(_field(raw, "source", "") or ""),
        xirr=coerce_number(xirr_raw) if xirr_raw is not None else None,
        invested_value=invested_value,
        current_value=current_value,
        pnl=pnl,
        pnl_percent=pnl_percent,
        recommendation=recommendation_for(pnl_percent),
    )


def enrich_holdings(
    rows: list[Any],
    quotes: Optional[Mapping[str, float]] = None,
) -> list[EnrichedHolding]:
    return [enrich_holding(r, quotes) for r in rows]


def guess_asset_type(
    name: str,
    symbol: str = "",
    *,
    isin: Optional[str] = None,
    type_hint: str = "",
    exchange: str = "",
) -> str:
    """Classify an instrument from its name, symbol and hints."""

    upper_symbol = (symbol or "").upper()
    combined = f"{name} {symbol} {type_hint}".lower()

    if isin and isin.upper().startswith("US"):
        return "US Stock"
    if "BEES" in upper_symbol or "ETF" in upper_symbol or " etf" in f" {combined}":
        return "ETF"
    if upper_symbol.startswith("SGB") or "sovereign gold" in combined:
        return "SGB"
    if (exchange or "").upper() == "MCX":
        return "Commodity"
    if upper_symbol in {"NIFTY", "SENSEX", "BANKNIFTY"} or upper_symbol.startswith("NIFTY"):
        return "Index"
    if any(k in combined for k in ("mutual", " fund", "growth", "direct plan", "idcw")):
        return "Mutual Fund"
    if "reit" in combined or "invit" in combined:
        return "REIT"
    if "bond" in combined or "debenture" in combined:
        return "Bond"
    if type_hint:
        for asset_type in ASSET_TYPES:
            if type_hint.strip().lower() == asset_type.lower():
                return asset_type
    return "Equity"


_SECTOR_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("IT", ("tech", "software", "infosys", "tcs", "wipro", "hcl", "infy")),
    ("Banking", ("bank", "hdfc", "icici", "axis", "kotak", "sbin")),
    ("Finance", ("finance", "bajfinance", "financial", "insurance")),
    ("Pharma", ("pharma", "health", "medical", "sunpharma", "cipla")),
    ("Auto", ("auto", "motor", "maruti", "tesla")),
    ("Power", ("power", "ntpc", "tata power")),
    ("Energy", ("energy", "oil", "reliance", "ongc", "petroleum")),
    ("Telecom", ("telecom", "airtel", "jio")),
    ("Metals", ("metal", "steel", "mining", "hindalco")),
    ("FMCG", ("fmcg", "itc", "hindunilvr", "nestle")),
    ("Consumer", ("consumer", "retail", "titan")),
    ("Chemicals", ("chemical", "pidilite")),
    ("Infra", ("infra", "construction", "larsen")),
    ("Real Estate", ("realty", "reit", "embassy", "real estate")),
    ("Commodity", ("gold", "silver", "commodity")),
    ("Index", ("nifty", "index", "sensex")),
    ("Diversified", ("diversified", "flexi", "multi cap", "multicap")),
)


def guess_sector(name: str, symbol: str = "", *, asset_type: str = "") -> str:
    if asset_type == "US Stock":
        return "International"
    if asset_type == "SGB":
        return "Commodity"
    combined = f"{name} {symbol}".lower()
    for sector, keywords in _SECTOR_KEYWORDS:
        if any(k in combined for k in keywords):
            return sector
    return "Other"


def guess_exchange(asset_type: str, isin: Optional[str] = None) -> str:
    if isin and isin.upper().startswith("US"):
        return "NASDAQ"
    if asset_type == "Mutual Fund":
        return "MF"
    return "NSE"


__all__ = [
    "ASSET_TYPES",
    "SECTORS",
    "NormalizedHolding",
    "EnrichedHolding",
    "parse_number",
    "coerce_number",
    "coerce_non_negative",
    "recommendation_for",
    "enrich_holding",
    "enrich_holdings",
    "guess_asset_type",
    "guess_sector",
    "guess_exchange",
]
