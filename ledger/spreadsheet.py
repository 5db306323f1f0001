"""
ledger/spreadsheet.py - Bet Ledger
===================================
Spreadsheet codec: bytes <-> rows. The file format itself is handled by
pandas + openpyxl; this module only adapts their output to RawRow / Bet.

- decode_workbook(): first sheet of an .xlsx/.xls file (or a .csv) -> RawRows
- encode_workbook(): Bets -> .xlsx bytes, one column per record field, no id

DO NOT add validation here. Row validation belongs to ledger/importer.py.
"""

import io
import logging
from pathlib import Path
from typing import Iterable

import pandas as pd

from ledger.models import RECORD_FIELDS, Bet, RawRow, bet_to_record

logger = logging.getLogger(__name__)

EXPORT_FILENAME = "bet_ledger.xlsx"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
SHEET_NAME = "Bets"


class SpreadsheetError(Exception):
    """The uploaded bytes could not be decoded as a spreadsheet."""


def decode_workbook(data: bytes, filename: str = "") -> list[RawRow]:
    """
    Decode the first sheet of a workbook into RawRows.

    Fully empty rows are dropped; empty cells become None. Row numbers are
    1-based data rows (the header row is not counted).

    Args:
        data:     File contents.
        filename: Original name; a ".csv" suffix selects the CSV reader.

    Raises:
        SpreadsheetError if the bytes are empty or cannot be parsed.
    """
    if not data:
        raise SpreadsheetError("empty file")

    source = io.BytesIO(data)
    try:
        if Path(filename).suffix.lower() == ".csv":
            frame = pd.read_csv(source)
        else:
            frame = pd.read_excel(source, sheet_name=0)
    except Exception as exc:  # noqa: BLE001
        logger.error("Could not decode %s: %s", filename or "upload", exc)
        raise SpreadsheetError(str(exc)) from exc

    frame = frame.dropna(how="all")
    frame = frame.astype(object).where(pd.notna(frame), None)

    rows = [
        RawRow(row_number=int(position) + 1, cells=record)
        for position, record in zip(frame.index, frame.to_dict("records"))
    ]
    logger.info("Decoded %d row(s) from %s", len(rows), filename or "upload")
    return rows


def encode_workbook(bets: Iterable[Bet]) -> bytes:
    """Encode bets as an .xlsx workbook. Dates are written as YYYY-MM-DD."""
    frame = pd.DataFrame(
        [bet_to_record(bet) for bet in bets],
        columns=list(RECORD_FIELDS),
    )
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        frame.to_excel(writer, index=False, sheet_name=SHEET_NAME)
    return buffer.getvalue()
