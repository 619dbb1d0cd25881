from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

# ISO-4217 minor units that differ from the usual two decimals.
_ZERO_DECIMAL = frozenset(
    {"BIF", "CLP", "DJF", "GNF", "ISK", "JPY", "KMF", "KRW", "PYG", "RWF", "UGX", "VND", "VUV",
     "XAF", "XOF", "XPF"}
)
_THREE_DECIMAL = frozenset({"BHD", "IQD", "JOD", "KWD", "LYD", "OMR", "TND"})

_KNOWN = frozenset(
    {"AED", "AUD", "BRL", "BWP", "CAD", "CHF", "CNY", "CZK", "DKK", "EGP", "EUR", "GBP", "GHS",
     "HKD", "HUF", "IDR", "ILS", "INR", "KES", "MAD", "MXN", "MYR", "NAD", "NGN", "NOK", "NZD",
     "PHP", "PLN", "QAR", "RON", "SAR", "SEK", "SGD", "THB", "TRY", "TWD", "TZS", "UAH", "USD",
     "ZAR", "ZMW"}
) | _ZERO_DECIMAL | _THREE_DECIMAL

SYMBOL_CURRENCIES: dict[str, str] = {
    "US$": "USD",
    "CA$": "CAD",
    "A$": "AUD",
    "£": "GBP",
    "€": "EUR",
    "¥": "JPY",
    "₹": "INR",
    "₦": "NGN",
}


def normalize_currency(value: str | None) -> str | None:
    if not value:
        return None
    code = re.sub(r"[^A-Za-z]", "", str(value)).upper()
    return code if code in _KNOWN else None


def is_iso4217_currency(value: str | None) -> bool:
    return normalize_currency(value) is not None


def minor_unit_exponent(currency: str | None) -> int:
    code = normalize_currency(currency) or ""
    if code in _ZERO_DECIMAL:
        return 0
    if code in _THREE_DECIMAL:
        return 3
    return 2


def quantize_amount(amount: Decimal | str | int | float, currency: str | None) -> Decimal:
    """Round ``amount`` to the currency's minor unit (half-up)."""
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Not a number: {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"Not a finite number: {amount!r}")
    exponent = Decimal(1).scaleb(-minor_unit_exponent(currency))
    return value.quantize(exponent, rounding=ROUND_HALF_UP)


def fits_minor_unit(amount: Decimal, currency: str | None) -> bool:
    """True when ``amount`` is finite and already exact to the currency's minor unit."""
    if not amount.is_finite():
        return False
    exponent = Decimal(1).scaleb(-minor_unit_exponent(currency))
    try:
        return amount.quantize(exponent) == amount
    except InvalidOperation:
        return False
