from __future__ import annotations

import math

import pytest

from app.services.holdings_normalizer import (
    RECOMMENDATION_ACCUMULATE,
    RECOMMENDATION_HOLD,
    RECOMMENDATION_REVIEW,
    RECOMMENDATION_RIDE,
    RECOMMENDATION_TRIM,
    coerce_number,
    enrich_holding,
    guess_asset_type,
    guess_exchange,
    guess_sector,
    parse_number,
    recommendation_for,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (12, 12.0),
        ("1,234.50", 1234.5),
        ("₹ 2,000", 2000.0),
        ("$15.25", 15.25),
        ("(12.5)", -12.5),
        ("  7 ", 7.0),
    ],
)
def test_parse_number_accepts_formatted_values(raw: object, expected: float) -> None:
    assert parse_number(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", [None, "", "abc", "N/A", True, float("nan"), math.inf])
def test_parse_number_rejects_unusable_values(raw: object) -> None:
    assert parse_number(raw) is None
    assert coerce_number(raw) == 0.0


@pytest.mark.parametrize(
    ("pnl_percent", "label"),
    [
        (120.0, RECOMMENDATION_TRIM),
        (50.0, RECOMMENDATION_TRIM),
        (49.99, RECOMMENDATION_RIDE),
        (25.0, RECOMMENDATION_RIDE),
        (24.99, RECOMMENDATION_HOLD),
        (5.0, RECOMMENDATION_HOLD),
        (4.99, RECOMMENDATION_ACCUMULATE),
        (0.0, RECOMMENDATION_ACCUMULATE),
        (-10.0, RECOMMENDATION_ACCUMULATE),
        (-10.01, RECOMMENDATION_REVIEW),
        (-80.0, RECOMMENDATION_REVIEW),
    ],
)
def test_recommendation_bands_partition_the_line(pnl_percent: float, label: str) -> None:
    assert recommendation_for(pnl_percent) == label


def test_enrich_derives_values_from_quantity_and_prices() -> None:
    enriched = enrich_holding(
        {"symbol": "INFY", "name": "Infosys", "quantity": 10, "avg_price": 100, "ltp": 120}
    )
    assert enriched.invested_value == pytest.approx(1000.0)
    assert enriched.current_value == pytest.approx(1200.0)
    assert enriched.pnl == pytest.approx(enriched.current_value - enriched.invested_value)
    assert enriched.pnl_percent == pytest.approx(20.0)
    assert enriched.recommendation == RECOMMENDATION_HOLD


def test_enrich_prefers_cached_quote_over_persisted_ltp() -> None:
    enriched = enrich_holding(
        {"symbol": "INFY", "quantity": 2, "avg_price": 100, "ltp": 90},
        quotes={"INFY": 160.0},
    )
    assert enriched.ltp == pytest.approx(160.0)
    assert enriched.pnl_percent == pytest.approx(60.0)
    assert enriched.recommendation == RECOMMENDATION_TRIM


def test_enrich_guards_zero_investment_and_bad_numbers() -> None:
    free = enrich_holding({"symbol": "BONUS", "quantity": 5, "avg_price": 0, "ltp": 10})
    assert free.invested_value == 0.0
    assert free.pnl_percent == 0.0

    broken = enrich_holding(
        {"symbol": "BAD", "quantity": "abc", "avg_price": "-5", "ltp": None}
    )
    assert broken.quantity == 0.0
    assert broken.avg_price == 0.0
    assert broken.current_value == 0.0
    assert broken.name == "BAD"


def test_guess_asset_type_from_names_and_hints() -> None:
    assert guess_asset_type("Nippon India ETF Nifty BeES", "NIFTYBEES") == "ETF"
    assert guess_asset_type("SGB Aug 2028", "SGBAUG28") == "SGB"
    assert guess_asset_type("Apple Inc", "AAPL", isin="US0378331005") == "US Stock"
    assert guess_asset_type("Gold Mini", "GOLDM", exchange="MCX") == "Commodity"
    assert (
        guess_asset_type("HDFC Flexi Cap Fund - Direct Plan Growth", "") == "Mutual Fund"
    )
    assert guess_asset_type("Embassy Office Parks REIT", "EMBASSY") == "REIT"
    assert guess_asset_type("Infosys Ltd", "INFY") == "Equity"
    assert guess_asset_type("Some holding", "XYZ", type_hint="ppf") == "PPF"


def test_guess_sector_and_exchange() -> None:
    assert guess_sector("Infosys Ltd", "INFY") == "IT"
    assert guess_sector("HDFC Bank", "HDFCBANK") == "Banking"
    assert guess_sector("Apple Inc", "AAPL", asset_type="US Stock") == "International"
    assert guess_sector("SGB Aug 2028", "SGBAUG28", asset_type="SGB") == "Commodity"
    assert guess_sector("Random Co", "RNDM") == "Other"

    assert guess_exchange("Equity", "US0378331005") == "NASDAQ"
    assert guess_exchange("Mutual Fund") == "MF"
    assert guess_exchange("Equity") == "NSE"
