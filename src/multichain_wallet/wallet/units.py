"""Conversions between human decimal amounts and smallest-unit integers."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext

from multichain_wallet.wallet.errors import InvalidInputError

DISPLAY_PLACES = Decimal("0.000001")

# Enough significant digits for any uint256 amount.
_PRECISION = 100


def format_amount(raw: int, decimals: int, symbol: str) -> str:
    """Render *raw* smallest units as ``"<amount with 6 places> <symbol>"``."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        value = (Decimal(raw) / (Decimal(10) ** decimals)).quantize(
            DISPLAY_PLACES, rounding=ROUND_HALF_UP
        )
    return f"{value:f} {symbol}"


def parse_amount(text: str | Decimal, decimals: int) -> Decimal:
    """Parse a positive, finite amount with at most *decimals* fractional digits."""
    try:
        amount = text if isinstance(text, Decimal) else Decimal(str(text).strip())
    except InvalidOperation:
        raise InvalidInputError(f"Invalid amount: {text!r}") from None
    if not amount.is_finite():
        raise InvalidInputError(f"Invalid amount: {text!r}")
    if amount <= 0:
        raise InvalidInputError("Amount must be greater than zero")
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        try:
            exact = amount == amount.quantize(Decimal(1).scaleb(-decimals))
        except InvalidOperation:
            exact = False
    if not exact:
        raise InvalidInputError(f"Amount has more than {decimals} decimal places")
    return amount


def to_smallest_unit(amount: Decimal, decimals: int) -> int:
    """Convert an already-validated decimal amount to an integer."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return int(amount.scaleb(decimals))
