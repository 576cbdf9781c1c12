from decimal import Decimal
from typing import Union

from compute import round2, to_dec

SUPPORTED_CURRENCIES = ("USD", "GBP", "EUR", "OTHER")

_SYMBOLS = {
    "USD": "$",
    "GBP": "£",
    "EUR": "€",
    "OTHER": "",
}

def get_currency_symbol(currency: str) -> str:
    # unknown codes fall back to GBP
    return _SYMBOLS.get(currency, "£")

def format_amount(amount: Union[Decimal, int, float, str], currency: str) -> str:
    """
    Render an amount for display: two decimal places, prefixed with the
    currency symbol. OTHER has no symbol and renders the bare number.
    """
    formatted = f"{round2(to_dec(amount)):.2f}"
    if currency == "OTHER":
        return formatted
    return f"{get_currency_symbol(currency)}{formatted}"
