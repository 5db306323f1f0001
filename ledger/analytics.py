"""
ledger/analytics.py - Bet Ledger
=================================
Pure analytics over a snapshot of bets. No I/O, no UI, no backend calls.

Responsibilities:
- Period filter: named period or explicit range -> inclusive day range
- Sort engine: ordered copy by a chosen criterion
- Statistics aggregator: turnover, net profit, ROI, accuracy, counts
- Cumulative series: chronological running P&L for the chart

Every function takes the snapshot as an argument and returns new objects.
Nothing here mutates its input, so the full pipeline can be re-run after
every change.

Periods are evaluated in the reporting timezone (UTC+8 by default), not the
host's local zone: "today" is the same day for every client.
"""

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Iterable, Optional

from ledger.models import (
    LOST,
    PENDING,
    REPORTING_TZ,
    VOID,
    WON,
    Bet,
    is_settled,
    parse_day,
    profit_loss,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PERIODS: dict[str, str] = {
    "all":       "All Time",
    "today":     "Today",
    "yesterday": "Yesterday",
    "last7days": "Last 7 Days",
    "thisMonth": "This Month",
    "thisYear":  "This Year",
    "custom":    "Custom",
}

# Period names used by older saved views
_PERIOD_ALIASES = {"7d": "last7days", "month": "thisMonth", "year": "thisYear"}

SORT_CRITERIA: dict[str, str] = {
    "date_desc":   "Date (Newest)",
    "date_asc":    "Date (Oldest)",
    "stake_desc":  "Stake (High-Low)",
    "stake_asc":   "Stake (Low-High)",
    "odds_desc":   "Odds (High-Low)",
    "odds_asc":    "Odds (Low-High)",
    "result":      "Result",
    "profit_desc": "Profit (High-Low)",
}

DEFAULT_SORT = "date_desc"

RESULT_PRIORITY = {WON: 0, LOST: 1, PENDING: 2, VOID: 3}


# ---------------------------------------------------------------------------
# Period filter
# ---------------------------------------------------------------------------

def current_day(now: Optional[datetime] = None, tz: Optional[tzinfo] = None) -> date:
    """
    Today's date in the reporting zone.

    Aware `now` values are converted to `tz`; naive ones are taken as
    already being wall-clock time in `tz`.
    """
    tz = tz or REPORTING_TZ
    if now is None:
        now = datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(tz)
    return now.date()


def period_range(
    period: str,
    custom_range: Optional[tuple] = None,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> Optional[tuple[date, date]]:
    """
    Resolve a period name to an inclusive (start, end) day range.

    Returns None when no filtering applies: "all", unknown periods, and a
    "custom" period without both bounds.

    >>> period_range("last7days", now=datetime(2025, 3, 10, 9, 0))
    (datetime.date(2025, 3, 4), datetime.date(2025, 3, 10))
    """
    period = _PERIOD_ALIASES.get(period, period)

    if period == "custom":
        start, end = (tuple(custom_range or ()) + (None, None))[:2]
        if not start or not end:
            return None
        try:
            return parse_day(start, tz), parse_day(end, tz)
        except ValueError as exc:
            logger.warning("Ignoring custom range %r: %s", custom_range, exc)
            return None

    if period not in PERIODS:
        logger.warning("Unknown period %r, showing all bets", period)
        return None
    if period == "all":
        return None

    today = current_day(now, tz)
    if period == "today":
        return today, today
    if period == "yesterday":
        yesterday = today - timedelta(days=1)
        return yesterday, yesterday
    if period == "last7days":
        return today - timedelta(days=6), today
    if period == "thisMonth":
        return today.replace(day=1), today
    # thisYear
    return today.replace(month=1, day=1), today


def filter_bets(
    bets: Iterable[Bet],
    period: str = "all",
    custom_range: Optional[tuple] = None,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> list[Bet]:
    """
    Bets whose day falls inside the period, inclusive at both ends.

    Input order is preserved. Filtering twice with the same arguments gives
    the same result as filtering once.

    Args:
        bets:         Snapshot to filter.
        period:       One of PERIODS ("all" by default).
        custom_range: (start, end) for period="custom"; dates or ISO strings.
        now:          Evaluation instant (defaults to the current time).
        tz:           Reporting timezone.
    """
    bounds = period_range(period, custom_range, now, tz)
    if bounds is None:
        return list(bets)

    start, end = bounds
    return [bet for bet in bets if start <= parse_day(bet.date, tz) <= end]


# ---------------------------------------------------------------------------
# Sort engine
# ---------------------------------------------------------------------------

_SORT_KEYS = {
    "date_desc":   (lambda b: b.date, True),
    "date_asc":    (lambda b: b.date, False),
    "stake_desc":  (lambda b: b.stake, True),
    "stake_asc":   (lambda b: b.stake, False),
    "odds_desc":   (lambda b: b.odds, True),
    "odds_asc":    (lambda b: b.odds, False),
    "result":      (lambda b: RESULT_PRIORITY.get(b.result, len(RESULT_PRIORITY)), False),
    "profit_desc": (profit_loss, True),
}


def sort_bets(bets: Iterable[Bet], criterion: str = DEFAULT_SORT) -> list[Bet]:
    """
    Ordered copy of `bets`.

    Ties keep their input order (sorted() is stable, including with
    reverse=True). An unknown criterion returns the bets in input order.
    """
    entry = _SORT_KEYS.get(criterion)
    if entry is None:
        logger.warning("Unknown sort criterion %r, keeping input order", criterion)
        return list(bets)
    key, reverse = entry
    return sorted(bets, key=key, reverse=reverse)


# ---------------------------------------------------------------------------
# Statistics aggregator
# ---------------------------------------------------------------------------

def aggregate_stats(bets: Iterable[Bet]) -> dict:
    """
    Summary metrics for a filtered set of bets.

    ROI is net profit over settled turnover (Won + Lost stakes). Accuracy is
    the share of settled bets that won. Both are percentages and are 0.0 when
    their denominator is zero. Values are unrounded.

    Returns:
        {
            "turnover":         float,
            "net_profit":       float,
            "settled_turnover": float,
            "roi":              float,   # percent
            "accuracy":         float,   # percent
            "total_bets":       int,
            "avg_stake":        float,
            "won":              int,
            "lost":             int,
            "pending":          int,
            "void":             int,
        }
    """
    bets = list(bets)
    settled = [b for b in bets if is_settled(b)]

    turnover = sum(b.stake for b in bets)
    net_profit = sum(profit_loss(b) for b in bets)
    settled_turnover = sum(b.stake for b in settled)
    won = sum(1 for b in bets if b.result == WON)
    total_bets = len(bets)

    return {
        "turnover": float(turnover),
        "net_profit": float(net_profit),
        "settled_turnover": float(settled_turnover),
        "roi": (net_profit / settled_turnover * 100) if settled_turnover > 0 else 0.0,
        "accuracy": (won / len(settled) * 100) if settled else 0.0,
        "total_bets": total_bets,
        "avg_stake": (turnover / total_bets) if total_bets > 0 else 0.0,
        "won": won,
        "lost": sum(1 for b in bets if b.result == LOST),
        "pending": sum(1 for b in bets if b.result == PENDING),
        "void": sum(1 for b in bets if b.result == VOID),
    }


# ---------------------------------------------------------------------------
# Cumulative series
# ---------------------------------------------------------------------------

def cumulative_series(bets: Iterable[Bet]) -> list[tuple[date, float]]:
    """
    Chronological running total of realized P&L, one point per bet.

    Pending bets are left out. Void bets add 0 but still get a point.
    Same-day bets keep their input order and each produce their own point.

    >>> d = date(2025, 1, 1)
    >>> cumulative_series([Bet("a", d, "NBA", "x", 50.0, 2.0, WON),
    ...                    Bet("b", d, "NBA", "y", 50.0, 2.0, LOST)])
    [(datetime.date(2025, 1, 1), 50.0), (datetime.date(2025, 1, 1), 0.0)]
    """
    realized = sorted((b for b in bets if b.result != PENDING), key=lambda b: b.date)

    series: list[tuple[date, float]] = []
    running = 0.0
    for bet in realized:
        running += profit_loss(bet)
        series.append((bet.date, running))
    return series
