"""
ledger/session.py - Bet Ledger
===============================
One user's ledger session: wires user actions to the backend and the
analytics engine. No Streamlit calls.

The session holds no bet list of its own. It reads the latest immutable
snapshot from its backend subscription and passes it explicitly to every
analytics call. Writes go to the backend first; the snapshot only changes
once the backend confirms and republishes.

Every action returns an ActionResult with a user-facing message. Validation
problems and backend failures are reported there, never raised.

Bulk import is all-or-nothing: the accepted rows go to the backend as one
batch, and a failure anywhere means nothing is committed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Iterable, Mapping, Optional

from ledger.analytics import (
    DEFAULT_SORT,
    aggregate_stats,
    cumulative_series,
    filter_bets,
    sort_bets,
)
from ledger.importer import ImportResult, normalize_rows
from ledger.models import REPORTING_TZ, Bet, ValidationError, new_bet_id, parse_bet_fields
from ledger.spreadsheet import SpreadsheetError, decode_workbook, encode_workbook
from ledger.store import BackendError

logger = logging.getLogger(__name__)

MSG_INVALID = "Please fix the following and try again."
MSG_NOT_FOUND = "Bet not found. It may have been deleted."
MSG_FILE_ERROR = "Failed to read the file. Please ensure it is a valid Excel file."
MSG_NO_VALID_ROWS = (
    "No valid bets found in the file. "
    "Check required fields (date, sport, details, stake, odds)."
)


@dataclass
class ActionResult:
    """Outcome of one user action, ready to show as a notice."""
    ok: bool
    message: str
    reasons: list[str] = field(default_factory=list)
    bet_id: Optional[str] = None
    count: int = 0


@dataclass(frozen=True)
class LedgerView:
    """Everything the dashboard renders for one update cycle."""
    filtered: list          # period-filtered, unsorted (stats + chart input)
    ordered: list           # filtered + sorted (bet list)
    stats: dict             # aggregate_stats(filtered)
    series: list            # cumulative_series(filtered)


class LedgerSession:
    def __init__(self, backend: Any, tz: Optional[tzinfo] = None) -> None:
        self.backend = backend
        self.tz = tz or REPORTING_TZ
        self._subscription = backend.subscribe()

    # -- reads --------------------------------------------------------------

    def snapshot(self) -> tuple:
        """Latest published collection."""
        return self._subscription.latest()

    def get_bet(self, bet_id: str) -> Optional[Bet]:
        return next((bet for bet in self.snapshot() if bet.id == bet_id), None)

    def view(
        self,
        period: str = "all",
        custom_range: Optional[tuple] = None,
        sort: str = DEFAULT_SORT,
        now: Optional[datetime] = None,
    ) -> LedgerView:
        """Run the full analytics pipeline over the current snapshot."""
        bets = self.snapshot()
        filtered = filter_bets(bets, period, custom_range, now=now, tz=self.tz)
        return LedgerView(
            filtered=filtered,
            ordered=sort_bets(filtered, sort),
            stats=aggregate_stats(filtered),
            series=cumulative_series(filtered),
        )

    # -- single-bet writes --------------------------------------------------

    def add_bet(self, fields: Mapping[str, Any]) -> ActionResult:
        taken = {bet.id for bet in self.snapshot()}
        bet_id = new_bet_id()
        while bet_id in taken:
            bet_id = new_bet_id()

        try:
            bet = parse_bet_fields(fields, bet_id=bet_id, tz=self.tz)
        except ValidationError as exc:
            return ActionResult(False, MSG_INVALID, reasons=exc.reasons)

        try:
            self.backend.create(bet)
        except BackendError as exc:
            logger.error("Error adding bet: %s", exc)
            return ActionResult(False, "Failed to log bet.", reasons=[str(exc)])
        return ActionResult(True, "Bet logged successfully.", bet_id=bet.id, count=1)

    def edit_bet(self, bet_id: str, fields: Mapping[str, Any]) -> ActionResult:
        """Replace every field of a bet except its ID."""
        if self.get_bet(bet_id) is None:
            return ActionResult(False, MSG_NOT_FOUND, bet_id=bet_id)

        try:
            bet = parse_bet_fields(fields, bet_id=bet_id, tz=self.tz)
        except ValidationError as exc:
            return ActionResult(False, MSG_INVALID, reasons=exc.reasons, bet_id=bet_id)

        try:
            self.backend.update(bet_id, bet)
        except BackendError as exc:
            logger.error("Error updating bet %s: %s", bet_id, exc)
            return ActionResult(False, "Failed to update bet.", reasons=[str(exc)], bet_id=bet_id)
        return ActionResult(True, "Bet updated successfully.", bet_id=bet_id, count=1)

    def delete_bet(self, bet_id: str) -> ActionResult:
        if self.get_bet(bet_id) is None:
            return ActionResult(False, MSG_NOT_FOUND, bet_id=bet_id)
        try:
            self.backend.delete(bet_id)
        except BackendError as exc:
            logger.error("Error deleting bet %s: %s", bet_id, exc)
            return ActionResult(False, "Failed to delete bet.", reasons=[str(exc)], bet_id=bet_id)
        return ActionResult(True, "Bet deleted successfully.", bet_id=bet_id, count=1)

    # -- import / export ----------------------------------------------------

    def prepare_import(
        self, data: bytes, filename: str = ""
    ) -> tuple[ActionResult, Optional[ImportResult]]:
        """
        Decode and normalize an uploaded file without writing anything.

        Returns the confirmation notice and the ImportResult to pass to
        commit_import(). The ImportResult is None when the file is unreadable.
        """
        try:
            rows = decode_workbook(data, filename)
        except SpreadsheetError:
            return ActionResult(False, MSG_FILE_ERROR), None

        result = normalize_rows(rows, existing_ids={bet.id for bet in self.snapshot()}, tz=self.tz)
        reasons = [f"Row {r.row_number}: {r.reason}" for r in result.rejected]
        if not result.accepted:
            return ActionResult(False, MSG_NO_VALID_ROWS, reasons=reasons), result

        message = f"This will add {len(result.accepted)} new bets from the file."
        if result.rejected_count:
            message += f" {result.rejected_count} row(s) will be skipped."
        return ActionResult(True, message, reasons=reasons, count=len(result.accepted)), result

    def commit_import(self, result: ImportResult) -> ActionResult:
        """Insert every accepted bet as one batch. All-or-nothing."""
        if not result.accepted:
            return ActionResult(False, MSG_NO_VALID_ROWS)
        try:
            self.backend.create_many(result.accepted)
        except BackendError as exc:
            logger.error("Error importing %d bets: %s", len(result.accepted), exc)
            return ActionResult(False, "Error importing bets.", reasons=[str(exc)])

        count = len(result.accepted)
        logger.info("Imported %d bets (%d rows skipped)", count, result.rejected_count)
        return ActionResult(True, f"{count} bets imported successfully.", count=count)

    def export_workbook(self, bets: Optional[Iterable[Bet]] = None) -> bytes:
        """xlsx bytes for `bets` (defaults to the whole collection, oldest first)."""
        if bets is None:
            bets = sort_bets(self.snapshot(), "date_asc")
        return encode_workbook(bets)

    def close(self) -> None:
        self._subscription.cancel()
