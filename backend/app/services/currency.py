from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from app.models.trial import Currency

# (thousands separator, decimal separator, max fraction digits)
_LOCALE_FORMATS: dict[Currency, tuple[str, str, int]] = {
    Currency.usd: (",", ".", 3),
    Currency.clp: (".", ",", 3),
}


def format_currency(amount: Decimal | int | float, currency: Currency | str) -> str:
    """Group an amount the way en-US (USD) or es-CL (CLP) number formatting does.

    Trailing zeros in the fraction are dropped, e.g. ``1234.50`` USD is
    ``1,234.5`` and ``1234.5`` CLP is ``1.234,5``.
    """
    currency = Currency(currency)
    thousands, decimal_sep, max_digits = _LOCALE_FORMATS[currency]
    value = Decimal(str(amount))
    quantum = Decimal(1).scaleb(-max_digits)
    value = value.quantize(quantum, rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    text = f"{abs(value):f}"
    whole, _, fraction = text.partition(".")
    fraction = fraction.rstrip("0")
    groups: list[str] = []
    while len(whole) > 3:
        groups.insert(0, whole[-3:])
        whole = whole[:-3]
    groups.insert(0, whole)
    formatted = thousands.join(groups)
    if fraction:
        formatted = f"{formatted}{decimal_sep}{fraction}"
    return f"{sign}{formatted}"


def format_money(amount: Decimal | int | float, currency: Currency | str) -> str:
    currency = Currency(currency)
    return f"${format_currency(amount, currency)} {currency.value}"
