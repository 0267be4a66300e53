import pytest

from services.instrument_data.matcher import (
    ALNUM_EXACT,
    CONTAINED,
    CONTAINS,
    PREFIX,
    WHOLE_WORD,
    best_match,
    rank,
    score,
)


@pytest.mark.parametrize("query,candidate,expected", [
    ("INFY", "INFY", WHOLE_WORD),
    ("HDFC", "HDFC BANK", WHOLE_WORD),
    ("BANK", "STATE BANK OF INDIA", WHOLE_WORD),
    ("M&M", "M&M", WHOLE_WORD),
    ("MM", "M&M", ALNUM_EXACT),
    ("BAJ-FINANCE", "BAJFINANCE", ALNUM_EXACT),
    ("HDFC", "HDFCBANK", PREFIX),
    ("HDFCBANKLTD", "HDFCBANK", PREFIX),
    ("BANK", "HDFCBANK", CONTAINS),
    ("XTCSX", "TCS", CONTAINED),
    ("ZZZ", "INFY", 0),
])
def test_score_tiers(query, candidate, expected):
    assert score(query, candidate) == expected


def test_score_is_case_insensitive():
    assert score("hdfc", "HDFC Bank") == WHOLE_WORD


@pytest.mark.parametrize("query,candidate", [
    ("A", "A"),
    ("INFY", ""),
    ("", "INFY"),
    (None, "INFY"),
])
def test_degenerate_inputs_never_match(query, candidate):
    assert score(query, candidate) == 0


def test_rank_orders_by_score_and_drops_misses():
    ranked = rank("HDFC", ["XHDFC", "HDFCBANK", "TCS", "HDFC BANK"])
    assert ranked == [("HDFC BANK", WHOLE_WORD), ("HDFCBANK", PREFIX), ("XHDFC", CONTAINS)]


def test_rank_keeps_catalog_order_on_ties():
    assert [c for c, _ in rank("BANK", ["HDFCBANK", "AXISBANK", "KOTAKBANK"])] == [
        "HDFCBANK", "AXISBANK", "KOTAKBANK",
    ]


def test_best_match_is_deterministic():
    candidates = ["ICICIBANK", "HDFCBANK", "HDFC BANK", "HDFCLIFE"]
    first = best_match("HDFC", candidates)
    assert first == "HDFC BANK"
    assert all(best_match("HDFC", candidates) == first for _ in range(5))


def test_best_match_none_when_nothing_scores():
    assert best_match("ZZZ", ["INFY", "TCS"]) is None
