from decimal import Decimal

import pytest

from multichain_wallet.wallet.errors import InvalidInputError
from multichain_wallet.wallet.units import format_amount, parse_amount, to_smallest_unit


@pytest.mark.parametrize(
    "raw, decimals, symbol, expected",
    [
        (0, 18, "ETH", "0.000000 ETH"),
        (10**18, 18, "ETH", "1.000000 ETH"),
        (1_234_567, 6, "USDC", "1.234567 USDC"),
        (1_234_567_5, 7, "T", "1.234568 T"),
        (5 * 10**11, 18, "ETH", "0.000001 ETH"),
        (4 * 10**11, 18, "ETH", "0.000000 ETH"),
        (2**256 - 1, 18, "BIG", "115792089237316195423570985008687907853269984665640564039457.584008 BIG"),
        (42, 0, "NFT", "42.000000 NFT"),
    ],
)
def test_format_amount(raw, decimals, symbol, expected):
    assert format_amount(raw, decimals, symbol) == expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1", Decimal("1")),
        (" 0.01 ", Decimal("0.01")),
        ("1.500", Decimal("1.5")),
        (Decimal("2.25"), Decimal("2.25")),
        ("1e-6", Decimal("0.000001")),
    ],
)
def test_parse_amount(text, expected):
    assert parse_amount(text, 18) == expected


@pytest.mark.parametrize(
    "text", ["", "abc", "1,5", "0", "-0.1", "Infinity", "nan", "1.0000000000000000000000000001"]
)
def test_parse_amount_rejects(text):
    with pytest.raises(InvalidInputError):
        parse_amount(text, 18)


def test_parse_amount_respects_token_precision():
    assert parse_amount("1.123456", 6) == Decimal("1.123456")
    with pytest.raises(InvalidInputError):
        parse_amount("1.1234567", 6)


def test_parse_amount_checks_every_fractional_digit():
    # More digits than the default 28-digit context holds.
    with pytest.raises(InvalidInputError):
        parse_amount("1." + "0" * 40 + "1", 18)
    assert parse_amount("1.5" + "0" * 40, 6) == Decimal("1.5")


def test_to_smallest_unit_is_exact():
    assert to_smallest_unit(Decimal("0.1"), 18) == 10**17
    assert to_smallest_unit(Decimal("123456789.123456789123456789"), 18) == 123456789123456789123456789
    assert to_smallest_unit(Decimal("1.5"), 6) == 1_500_000
