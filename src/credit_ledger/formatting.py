"""Presentation helpers that turn engine numbers into display text.

The ledger engine only ever produces :class:`~decimal.Decimal` values and
``(year, month)`` keys. This module renders them for a given currency
configuration: amounts become currency strings, month keys become short upper
case month labels in the configured locale's language.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Dict, Mapping, Tuple

from .constants import DEFAULT_CURRENCY_CODE


@dataclass(frozen=True)
class CurrencySpec:
    """Display conventions for one supported currency."""

    code: str
    locale: str
    name: str
    symbol: str
    thousands_separator: str = ","
    decimal_separator: str = "."
    symbol_after: bool = False


@dataclass(frozen=True)
class CurrencyConfig:
    """User-selected currency context applied uniformly at render time."""

    code: str = DEFAULT_CURRENCY_CODE
    locale: str = "es-DO"
    show_decimals: bool = True


SUPPORTED_CURRENCIES: Mapping[str, CurrencySpec] = {
    spec.code: spec
    for spec in (
        CurrencySpec("DOP", "es-DO", "Peso Dominicano (RD$)", "RD$"),
        CurrencySpec("USD", "en-US", "Dólar Estadounidense ($)", "$"),
        CurrencySpec("EUR", "es-ES", "Euro (€)", "€", ".", ",", symbol_after=True),
        CurrencySpec("COP", "es-CO", "Peso Colombiano ($)", "$", ".", ","),
        CurrencySpec("MXN", "es-MX", "Peso Mexicano ($)", "$"),
        CurrencySpec("ARS", "es-AR", "Peso Argentino ($)", "$", ".", ","),
        CurrencySpec("CLP", "es-CL", "Peso Chileno ($)", "$", ".", ","),
        CurrencySpec("PEN", "es-PE", "Sol Peruano (S/)", "S/"),
        CurrencySpec("VES", "es-VE", "Bolívar (Bs)", "Bs", ".", ","),
        CurrencySpec("GTQ", "es-GT", "Quetzal (Q)", "Q"),
        CurrencySpec("HNL", "es-HN", "Lempira (L)", "L"),
        CurrencySpec("NIO", "es-NI", "Córdoba (C$)", "C$"),
        CurrencySpec("CRC", "es-CR", "Colón (₡)", "₡", " ", ","),
        CurrencySpec("PYG", "es-PY", "Guaraní (₲)", "₲", ".", ","),
        CurrencySpec("UYU", "es-UY", "Peso Uruguayo ($)", "$", ".", ","),
        CurrencySpec("BOB", "es-BO", "Boliviano (Bs)", "Bs", ".", ","),
    )
}

# Amount shown when previewing a currency choice.
SAMPLE_AMOUNT = Decimal("12345.67")

MONTH_ABBREVIATIONS: Dict[str, Tuple[str, ...]] = {
    "es": ("ENE", "FEB", "MAR", "ABR", "MAY", "JUN", "JUL", "AGO", "SEPT", "OCT", "NOV", "DIC"),
    "en": ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"),
}


def get_currency(code: str) -> CurrencySpec:
    """Return the display conventions for ``code``.

    Raises:
        KeyError: If the currency code is not supported.
    """

    try:
        return SUPPORTED_CURRENCIES[code.upper()]
    except KeyError as exc:
        raise KeyError(f"Unsupported currency code: {code}") from exc


def config_for(code: str, *, show_decimals: bool = True) -> CurrencyConfig:
    """Build a :class:`CurrencyConfig` using the currency's default locale."""

    spec = get_currency(code)
    return CurrencyConfig(code=spec.code, locale=spec.locale, show_decimals=show_decimals)


def _group_digits(digits: str, separator: str) -> str:
    groups = []
    while len(digits) > 3:
        groups.insert(0, digits[-3:])
        digits = digits[:-3]
    groups.insert(0, digits)
    return separator.join(groups)


def format_amount(value: Decimal, config: CurrencyConfig) -> str:
    """Render ``value`` as a currency string for ``config``.

    Rounding happens here and only here: half-up to two places when
    ``config.show_decimals`` is set, to whole units otherwise. Negative values
    keep a leading minus sign.

    Args:
        value (Decimal): Amount computed by the ledger engine.
        config (CurrencyConfig): Active currency configuration.

    Returns:
        str: Localised text such as ``"RD$1,234.50"`` or ``"1.234,50 €"``.
    """

    spec = get_currency(config.code)
    value = Decimal(value)
    exponent = Decimal("0.01") if config.show_decimals else Decimal("1")
    with localcontext() as ctx:
        # quantize fails when the result has more digits than the context allows
        ctx.prec = max(ctx.prec, value.adjusted() + 4)
        rounded = value.quantize(exponent, rounding=ROUND_HALF_UP)
    sign = "-" if rounded < 0 else ""
    whole, _, fraction = f"{rounded.copy_abs():f}".partition(".")

    number = _group_digits(whole, spec.thousands_separator)
    if fraction:
        number = f"{number}{spec.decimal_separator}{fraction}"

    if spec.symbol_after:
        return f"{sign}{number} {spec.symbol}"
    return f"{sign}{spec.symbol}{number}"


def format_month_label(year: int, month: int, locale: str = "es-DO") -> str:
    """Return the short upper-case month name for a monthly bucket.

    ``year`` is accepted so callers can pass a bucket key straight through;
    labels do not include it. Unknown languages fall back to English.
    """

    if not 1 <= month <= 12:
        raise ValueError(f"Month out of range: {month}")
    language = locale.split("-")[0].lower()
    names = MONTH_ABBREVIATIONS.get(language, MONTH_ABBREVIATIONS["en"])
    return names[month - 1]


__all__ = [
    "CurrencySpec",
    "CurrencyConfig",
    "SUPPORTED_CURRENCIES",
    "SAMPLE_AMOUNT",
    "get_currency",
    "config_for",
    "format_amount",
    "format_month_label",
]
