"""Tests for fix pricing tiers."""

from hostfix.billing.pricing import (
    PROMOTIONAL_FIX_LIMIT,
    PROMOTIONAL_FIX_PRICE,
    STANDARD_FIX_PRICE,
    format_price,
    get_fix_price,
    is_promotional,
)


def test_first_fix_is_promotional():
    assert get_fix_price(0) == PROMOTIONAL_FIX_PRICE == 300


def test_last_promotional_fix():
    assert get_fix_price(PROMOTIONAL_FIX_LIMIT - 1) == 300
    assert is_promotional(PROMOTIONAL_FIX_LIMIT - 1)


def test_standard_rate_after_limit():
    assert get_fix_price(PROMOTIONAL_FIX_LIMIT) == STANDARD_FIX_PRICE == 500
    assert get_fix_price(1000) == 500
    assert not is_promotional(PROMOTIONAL_FIX_LIMIT)


def test_format_price():
    assert format_price(300) == "$3.00"
    assert format_price(1250) == "$12.50"
