"""Tests for price parsing and KES formatting"""

import pytest

from utils.price_utils import format_kes, normalize_price_text, to_kes


@pytest.mark.parametrize("price,expected", [
    ("500 USD", 65000),
    ("$38", 4940),
    ("$12.50", 1625),
    ("Ksh 2,500", 2500),
    ("KES 1200", 1200),
    ("KSh 1,200 - 1,500", 1200),
    ("3500", 3500),
    (3500, 3500),
    (1999.6, 2000),
])
def test_to_kes(price, expected):
    assert to_kes(price, 130) == expected


@pytest.mark.parametrize("price", [None, "", "price on request", True, -5, float("nan")])
def test_to_kes_unreadable(price):
    assert to_kes(price, 130) is None


def test_format_kes():
    assert format_kes(65000) == "Ksh 65,000"
    assert format_kes(500) == "Ksh 500"


def test_normalize_price_text():
    assert normalize_price_text("500 USD", 130) == "Ksh 65,000"
    assert normalize_price_text("varies", 130) == "varies"
    assert normalize_price_text(None, 130) is None
