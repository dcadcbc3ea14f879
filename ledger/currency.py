from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

Number = Union[int, float, Decimal]


@dataclass(frozen=True)
class CurrencyOption:
    symbol: str
    code: str
    name: str
    decimal_places: int


SUPPORTED_CURRENCIES = (
    CurrencyOption("₱", "PHP", "Philippine Peso", 2),
    CurrencyOption("$", "USD", "US Dollar", 2),
    CurrencyOption("€", "EUR", "Euro", 2),
    CurrencyOption("£", "GBP", "British Pound", 2),
    CurrencyOption("¥", "JPY", "Japanese Yen", 0),
)

DEFAULT_CURRENCY = SUPPORTED_CURRENCIES[0]


def currency_by_symbol(symbol: Optional[str]) -> CurrencyOption:
    for option in SUPPORTED_CURRENCIES:
        if option.symbol == symbol:
            return option
    return DEFAULT_CURRENCY


def currency_by_code(code: Optional[str]) -> CurrencyOption:
    wanted = (code or "").upper()
    for option in SUPPORTED_CURRENCIES:
        if option.code == wanted:
            return option
    return DEFAULT_CURRENCY


def resolve_currency(value: Optional[str]) -> CurrencyOption:
    """Accept either a symbol or an ISO code, as stored preferences use both."""
    if value and value.upper() in {c.code for c in SUPPORTED_CURRENCIES}:
        return currency_by_code(value)
    return currency_by_symbol(value)


def format_amount(amount: Optional[Number], currency: CurrencyOption = DEFAULT_CURRENCY) -> str:
    value = Decimal(str(amount or 0))
    quantum = Decimal(1).scaleb(-currency.decimal_places)
    rounded = value.quantize(quantum, rounding=ROUND_HALF_UP)
    sign = "-" if rounded < 0 else ""
    return f"{sign}{currency.symbol}{abs(rounded):,.{currency.decimal_places}f}"


class CurrencyFormatter:
    """Formats amounts with the user's preferred currency."""

    def __init__(self, currency: CurrencyOption = DEFAULT_CURRENCY):
        self.currency = currency

    def format_amount(self, amount: Optional[Number]) -> str:
        return format_amount(amount, self.currency)

    __call__ = format_amount
