"""
ledger/formatting.py - display helpers. The only place amounts are rounded.
"""

from ledger.models import LOST, PENDING, VOID, WON

RESULT_COLORS = {
    WON:     "#22c55e",
    LOST:    "#ef4444",
    PENDING: "#f59e0b",
    VOID:    "#6b7280",
}


def format_money(amount: float, symbol: str = "₱") -> str:
    """
    >>> format_money(1234.5)
    '₱1,234.50'
    >>> format_money(-50, "$")
    '-$50.00'
    """
    sign = "-" if round(amount, 2) < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def format_signed_money(amount: float, symbol: str = "₱") -> str:
    """Money with an explicit + for gains; zero renders as a dash."""
    if round(amount, 2) == 0:
        return "—"
    prefix = "+" if amount > 0 else ""
    return prefix + format_money(amount, symbol)


def format_pct(value: float) -> str:
    """
    >>> format_pct(33.3333)
    '33.33%'
    """
    return f"{value:.2f}%"


def format_odds(odds: float) -> str:
    return f"{odds:.2f}"


def profit_color(amount: float) -> str:
    if amount > 0:
        return RESULT_COLORS[WON]
    if amount < 0:
        return RESULT_COLORS[LOST]
    return RESULT_COLORS[VOID]
