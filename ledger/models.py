"""
ledger/models.py - Bet Ledger
==============================
The Bet record, its outcome math, and field validation. No I/O, no UI.

Responsibilities:
- Bet dataclass (the only entity) and RawRow (an untyped spreadsheet row)
- Profit/loss from (stake, odds, result), never stored
- Strict validation for user-entered and backend-read records
- Day normalization in the reporting timezone
- Collision-resistant bet IDs

P&L formula (decimal odds):
    Won:            stake * odds - stake
    Lost:           -stake
    Pending / Void: 0

Amounts stay unrounded here. Rounding to 2 places happens only in
ledger/formatting.py, at display time.
"""

import itertools
import math
import re
import secrets
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Mapping, Optional


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

WON = "Won"
LOST = "Lost"
PENDING = "Pending"
VOID = "Void"

RESULTS: tuple = (WON, LOST, PENDING, VOID)
SETTLED_RESULTS: frozenset = frozenset({WON, LOST})

# Fixed reporting zone (UTC+8). Overridable through LEDGER_TIMEZONE.
REPORTING_TZ = timezone(timedelta(hours=8), "UTC+08:00")

# Spreadsheet day 0. Serial 1 = 1900-01-01 after the Lotus leap-year bug.
EXCEL_EPOCH = date(1899, 12, 30)

# Flat record columns, in export order. id is never exported.
RECORD_FIELDS: tuple = ("date", "sport", "details", "stake", "odds", "result", "notes")

_DATE_FORMATS = ("%Y/%m/%d", "%m/%d/%Y", "%d %b %Y", "%b %d, %Y", "%d-%b-%Y")

# "1,250" / "-12,000.50": the only comma usage accepted in numbers
_GROUPED_NUMBER_RE = re.compile(r"^[+-]?\d{1,3}(,\d{3})+(\.\d+)?$")

_ID_COUNTER = itertools.count()


class ValidationError(ValueError):
    """A record failed validation. `reasons` lists every problem found."""

    def __init__(self, reasons: list[str]) -> None:
        self.reasons = list(reasons)
        super().__init__("; ".join(self.reasons))


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Bet:
    """A single wagered-outcome record."""
    id: str
    date: date
    sport: str
    details: str
    stake: float
    odds: float             # decimal odds, payout = stake * odds
    result: str = PENDING   # one of RESULTS
    notes: str = ""


@dataclass
class RawRow:
    """One decoded spreadsheet row, before validation."""
    row_number: int                     # 1-based data row (header excluded)
    cells: Mapping[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Outcome math
# ---------------------------------------------------------------------------

def profit_loss(bet: Bet) -> float:
    """
    Net profit/loss of a bet.

    >>> profit_loss(Bet("a", date(2025, 1, 1), "NBA", "x", 100.0, 2.5, WON))
    150.0
    >>> profit_loss(Bet("a", date(2025, 1, 1), "NBA", "x", 100.0, 2.5, LOST))
    -100.0
    """
    if bet.result == WON:
        return bet.stake * bet.odds - bet.stake
    if bet.result == LOST:
        return -bet.stake
    return 0.0


def is_settled(bet: Bet) -> bool:
    return bet.result in SETTLED_RESULTS


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def normalize_result(value: Any) -> Optional[str]:
    """Return the canonical result name for `value` (case-insensitive), or None."""
    if not isinstance(value, str):
        return None
    key = value.strip().lower()
    for result in RESULTS:
        if result.lower() == key:
            return result
    return None


def to_number(value: Any) -> float:
    """
    Coerce a cell or form value to a finite float.

    Accepts ints, floats and numeric strings. Commas are accepted only as
    thousands grouping ("1,250.50"); decimal commas such as "2,5" or
    "1.234,56" are rejected rather than guessed at.
    Raises ValueError for booleans, blanks, NaN/inf and anything else.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty value")
        if "," in text:
            if not _GROUPED_NUMBER_RE.match(text):
                raise ValueError(f"ambiguous number: {value!r}")
            text = text.replace(",", "")
        number = float(text)
    else:
        number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return number


def parse_day(value: Any, tz: Optional[tzinfo] = None) -> date:
    """
    Normalize a date-like value to a calendar day in the reporting zone.

    - date:             as-is
    - aware datetime:   converted to `tz`, then truncated
    - naive datetime:   treated as wall-clock time in `tz`, truncated
    - str:              ISO 8601 first, then a few common textual formats
    - int/float:        spreadsheet serial day number

    Raises ValueError when the value cannot be read as a date.
    """
    tz = tz or REPORTING_TZ

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"not a date: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value < 1:
            raise ValueError(f"not a spreadsheet serial date: {value!r}")
        return EXCEL_EPOCH + timedelta(days=int(value))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty date")
        try:
            return parse_day(datetime.fromisoformat(text.replace("Z", "+00:00")), tz)
        except ValueError:
            pass
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        raise ValueError(f"unrecognized date: {value!r}")
    raise ValueError(f"not a date: {value!r}")


def new_bet_id() -> str:
    """
    Fresh bet ID: millisecond clock + process-wide counter + random suffix.

    The counter keeps IDs distinct within one millisecond; the random part
    keeps them distinct across processes.
    """
    millis = int(time.time() * 1000)
    return f"{millis:x}-{next(_ID_COUNTER):06x}-{secrets.token_hex(4)}"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _text(fields: Mapping[str, Any], name: str) -> str:
    value = fields.get(name)
    return "" if value is None else str(value).strip()


def parse_bet_fields(
    fields: Mapping[str, Any],
    bet_id: Optional[str] = None,
    tz: Optional[tzinfo] = None,
) -> Bet:
    """
    Build a Bet from a flat mapping, rejecting anything invalid.

    Used for bets entered or edited by the user and for records read back
    from a backend. Unlike the import normalizer, nothing is defaulted
    except notes: an unknown result is an error here.

    Args:
        fields: Mapping with date, sport, details, stake, odds, result, notes.
        bet_id: ID to assign. Falls back to fields["id"].
        tz:     Reporting timezone for datetime values.

    Raises:
        ValidationError listing every problem found.
    """
    reasons: list[str] = []

    bet_id = bet_id or _text(fields, "id")
    if not bet_id:
        reasons.append("id is required")

    day = None
    try:
        day = parse_day(fields.get("date"), tz)
    except ValueError:
        reasons.append("date is missing or invalid")

    sport = _text(fields, "sport")
    if not sport:
        reasons.append("sport is required")
    details = _text(fields, "details")
    if not details:
        reasons.append("details is required")

    numbers: dict[str, float] = {}
    for name in ("stake", "odds"):
        try:
            numbers[name] = to_number(fields.get(name))
        except (TypeError, ValueError):
            reasons.append(f"{name} must be a number")
            continue
        if numbers[name] < 0:
            reasons.append(f"{name} cannot be negative")

    result = normalize_result(fields.get("result"))
    if result is None:
        reasons.append(f"result must be one of {', '.join(RESULTS)}")

    if reasons:
        raise ValidationError(reasons)

    return Bet(
        id=bet_id,
        date=day,
        sport=sport,
        details=details,
        stake=numbers["stake"],
        odds=numbers["odds"],
        result=result,
        notes=_text(fields, "notes"),
    )


def bet_to_record(bet: Bet, include_id: bool = False) -> dict:
    """Flat dict of a bet with the date as ISO YYYY-MM-DD."""
    record = {
        "date": bet.date.isoformat(),
        "sport": bet.sport,
        "details": bet.details,
        "stake": bet.stake,
        "odds": bet.odds,
        "result": bet.result,
        "notes": bet.notes,
    }
    if include_id:
        record = {"id": bet.id, **record}
    return record
