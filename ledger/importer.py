"""
ledger/importer.py - Bet Ledger
================================
Turns untyped spreadsheet rows into valid Bets. No file I/O, no backend calls.

This is the only place a RawRow becomes a Bet. Rows that fail validation
never cross the boundary; they come back as RowRejection entries with the
reason, so the caller can report them.

Row rules:
- date, sport, details: required, non-empty
- stake, odds: required, finite numbers, not negative (negatives are rejected)
- result: Won / Lost / Pending / Void, any case; anything else -> Pending
- notes: optional, defaults to ""
- headers match case- and whitespace-insensitively ("Stake " == "stake")

Every accepted row gets a fresh ID that is distinct from `existing_ids` and
from every other row in the batch. Inserting the batch is the caller's job.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Any, Iterable, Mapping, Optional, Union

from ledger.models import (
    PENDING,
    Bet,
    RawRow,
    new_bet_id,
    normalize_result,
    parse_day,
    to_number,
)

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("date", "sport", "details", "stake", "odds")


@dataclass
class RowRejection:
    row_number: int
    reason: str


@dataclass
class ImportResult:
    """Outcome of normalizing one batch of rows."""
    accepted: list[Bet] = field(default_factory=list)
    rejected: list[RowRejection] = field(default_factory=list)

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)

    def summary(self) -> str:
        return f"{len(self.accepted)} valid, {self.rejected_count} skipped"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _clean_cells(cells: Mapping[Any, Any]) -> dict[str, Any]:
    """Lower-case, stripped header names. Blank cells become None."""
    cleaned: dict[str, Any] = {}
    for header, value in cells.items():
        if header is None:
            continue
        cleaned[str(header).strip().lower()] = None if _is_blank(value) else value
    return cleaned


def _coerce_row(cells: Mapping[Any, Any], tz: Optional[tzinfo]) -> tuple[dict, list[str]]:
    """
    Coerce one row's cells to Bet fields.

    Returns (fields, reasons). `fields` is only usable when `reasons` is empty.
    """
    row = _clean_cells(cells)
    reasons = [f"missing {name}" for name in REQUIRED_COLUMNS if row.get(name) is None]
    if reasons:
        return {}, reasons

    fields: dict[str, Any] = {
        "sport": str(row["sport"]).strip(),
        "details": str(row["details"]).strip(),
    }

    try:
        fields["date"] = parse_day(row["date"], tz)
    except ValueError:
        reasons.append(f"invalid date {row['date']!r}")

    for name in ("stake", "odds"):
        try:
            number = to_number(row[name])
        except (TypeError, ValueError):
            reasons.append(f"{name} is not a number ({row[name]!r})")
            continue
        if number < 0:
            reasons.append(f"negative {name} ({number:g})")
        fields[name] = number

    fields["result"] = normalize_result(row.get("result")) or PENDING
    notes = row.get("notes")
    fields["notes"] = "" if notes is None else str(notes).strip()
    return fields, reasons


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def normalize_rows(
    rows: Iterable[Union[RawRow, Mapping[str, Any]]],
    existing_ids: Iterable[str] = (),
    tz: Optional[tzinfo] = None,
) -> ImportResult:
    """
    Validate and coerce decoded spreadsheet rows.

    Args:
        rows:         RawRow objects, or plain mappings (numbered from 1).
        existing_ids: IDs already in the collection; new IDs avoid them.
        tz:           Reporting timezone for datetime cells.

    Returns:
        ImportResult with the accepted Bets (input order) and the rejections.
    """
    result = ImportResult()
    taken = set(existing_ids)

    for index, row in enumerate(rows, start=1):
        if not isinstance(row, RawRow):
            row = RawRow(row_number=index, cells=row)

        fields, reasons = _coerce_row(row.cells, tz)
        if reasons:
            result.rejected.append(RowRejection(row.row_number, "; ".join(reasons)))
            continue

        bet_id = new_bet_id()
        while bet_id in taken:
            bet_id = new_bet_id()
        taken.add(bet_id)
        result.accepted.append(Bet(id=bet_id, **fields))

    if result.rejected:
        logger.warning(
            "Import skipped %d row(s); first: row %d (%s)",
            result.rejected_count,
            result.rejected[0].row_number,
            result.rejected[0].reason,
        )
    logger.info("Import normalized: %s", result.summary())
    return result
