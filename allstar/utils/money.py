"""
Unified money formatting for SMS texts and API responses.

Usage:
    from allstar.utils.money import format_money

    format_money(1500)              -> "P1,500"
    format_money(1499.5, decimals=2) -> "P1,499.50"
"""
from decimal import Decimal

# SMS gateways mangle "₱", so texts use a plain "P"
_CURRENCY_PREFIX = {
    "PHP": "P",
}


def format_money(amount, currency: str = "PHP", decimals: int = 0) -> str:
    """
    Format an amount with thousands separators and a currency prefix.

    Args:
        amount: int / float / Decimal / str
        currency: ISO code (PHP …)
        decimals: digits after the point (0 for whole pesos, 2 for centavos)
    """
    if isinstance(amount, str):
        amount = Decimal(amount)
    fmt = f"{{:,.{decimals}f}}"
    return f"{_CURRENCY_PREFIX.get(currency, currency)}{fmt.format(amount)}"
