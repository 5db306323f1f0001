"""
ledger/store.py - Bet Ledger
=============================
SQLite persistence for the no-server setup. No UI, no analytics.

Responsibilities:
- Initialize SQLite schema (WAL mode for safe concurrent reads+writes)
- Create / update / delete bets, scoped to one user_id
- Batch insert inside a single transaction (all-or-nothing import)
- Publish the full collection to the snapshot channel after every write

Schema: bets table
  id          TEXT PRIMARY KEY   -- generated by models.new_bet_id()
  user_id     TEXT NOT NULL      -- every query is scoped to this
  date        TEXT NOT NULL      -- YYYY-MM-DD in the reporting zone
  sport       TEXT NOT NULL
  details     TEXT NOT NULL
  stake       REAL NOT NULL
  odds        REAL NOT NULL
  result      TEXT NOT NULL      -- "Won", "Lost", "Pending", "Void"
  notes       TEXT DEFAULT ''
  created_at  TEXT NOT NULL      -- ISO 8601 UTC

Profit/loss is not stored. It is always computed from stake, odds, result.

DO NOT add Streamlit calls to this file.
"""

import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from ledger.channel import SnapshotChannel, Subscription
from ledger.models import Bet, ValidationError, bet_to_record, parse_bet_fields

logger = logging.getLogger(__name__)

# Default DB path - can be overridden in tests
DEFAULT_DB_PATH = str(Path(__file__).parent.parent / "data" / "ledger.db")

DEFAULT_USER_ID = "local"


class BackendError(Exception):
    """A persistence operation failed. Raised by every backend."""


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
PRAGMA journal_mode = WAL;
PRAGMA synchronous = NORMAL;

CREATE TABLE IF NOT EXISTS bets (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    date        TEXT NOT NULL,
    sport       TEXT NOT NULL,
    details     TEXT NOT NULL,
    stake       REAL NOT NULL,
    odds        REAL NOT NULL,
    result      TEXT NOT NULL DEFAULT 'Pending',
    notes       TEXT DEFAULT '',
    created_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_bets_user_date
    ON bets(user_id, date);
"""


# ---------------------------------------------------------------------------
# Connection management
# ---------------------------------------------------------------------------

def get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """
    Open a SQLite connection with WAL mode.

    Row factory set to sqlite3.Row for dict-like access.

    Args:
        db_path: Path to the SQLite DB file. Defaults to data/ledger.db.
    """
    if db_path is None:
        db_path = DEFAULT_DB_PATH

    db_dir = os.path.dirname(db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def init_db(db_path: Optional[str] = None) -> None:
    """Initialize the schema. Safe to call multiple times (CREATE IF NOT EXISTS)."""
    conn = get_connection(db_path)
    try:
        conn.executescript(_SCHEMA_SQL)
        conn.commit()
        logger.info("Database initialized: %s", db_path or DEFAULT_DB_PATH)
    except sqlite3.Error as exc:
        logger.error("Schema init failed: %s", exc)
        raise
    finally:
        conn.close()


def _row_params(bet: Bet) -> tuple:
    record = bet_to_record(bet)
    return (
        record["date"], record["sport"], record["details"], record["stake"],
        record["odds"], record["result"], record["notes"],
    )


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class SqliteBackend:
    """
    Local bet storage for a single user.

    Every write publishes the fresh collection to subscribers before
    returning, so readers never see a write that has not been committed.
    """

    name = "sqlite"

    def __init__(self, db_path: Optional[str] = None, user_id: str = DEFAULT_USER_ID) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self.user_id = user_id
        self._channel = SnapshotChannel()
        try:
            init_db(self.db_path)
        except sqlite3.Error as exc:
            raise BackendError(f"could not open {self.db_path}: {exc}") from exc
        self.refresh()

    # -- reads --------------------------------------------------------------

    def list_bets(self) -> list[Bet]:
        """All bets for this user, oldest first. Invalid rows are skipped."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM bets WHERE user_id = ? ORDER BY date, created_at",
                (self.user_id,),
            ).fetchall()
        except sqlite3.Error as exc:
            logger.error("list_bets failed: %s", exc)
            raise BackendError(str(exc)) from exc
        finally:
            conn.close()

        bets = []
        for row in rows:
            try:
                bets.append(parse_bet_fields(dict(row)))
            except ValidationError as exc:
                logger.warning("Skipping stored bet %s: %s", row["id"], exc)
        return bets

    def refresh(self) -> bool:
        """Re-read the collection and publish it. Returns True if it changed."""
        bets = tuple(self.list_bets())
        changed = bets != self._channel.current
        self._channel.publish(bets)
        return changed

    def subscribe(self, listener=None) -> Subscription:
        return self._channel.subscribe(listener)

    # -- writes -------------------------------------------------------------

    def create(self, bet: Bet) -> str:
        """Insert one bet. Returns its ID."""
        return self.create_many([bet])[0]

    def create_many(self, bets: Iterable[Bet]) -> list[str]:
        """
        Insert a batch of bets in one transaction.

        All-or-nothing: if any row fails (e.g. a duplicate ID) nothing is
        committed and BackendError is raised.
        """
        bets = list(bets)
        if not bets:
            return []

        now = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self.db_path)
        try:
            conn.executemany(
                """
                INSERT INTO bets
                    (id, user_id, date, sport, details, stake, odds,
                     result, notes, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [(bet.id, self.user_id, *_row_params(bet), now) for bet in bets],
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("Insert of %d bet(s) failed: %s", len(bets), exc)
            raise BackendError(str(exc)) from exc
        finally:
            conn.close()

        logger.info("Inserted %d bet(s) for user %s", len(bets), self.user_id)
        self._after_write()
        return [bet.id for bet in bets]

    def update(self, bet_id: str, bet: Bet) -> None:
        """Replace every field of an existing bet except its ID."""
        self._write(
            """
            UPDATE bets SET
                date = ?, sport = ?, details = ?, stake = ?,
                odds = ?, result = ?, notes = ?
            WHERE id = ? AND user_id = ?
            """,
            (*_row_params(bet), bet_id, self.user_id),
            action="update",
            bet_id=bet_id,
        )

    def delete(self, bet_id: str) -> None:
        self._write(
            "DELETE FROM bets WHERE id = ? AND user_id = ?",
            (bet_id, self.user_id),
            action="delete",
            bet_id=bet_id,
        )

    def close(self) -> None:
        self._channel.close()

    def _write(self, sql: str, params: tuple, action: str, bet_id: str) -> None:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("%s of bet %s failed: %s", action, bet_id, exc)
            raise BackendError(str(exc)) from exc
        finally:
            conn.close()

        if cursor.rowcount == 0:
            logger.error("%s: bet %s not found", action, bet_id)
            raise BackendError(f"bet {bet_id} not found")
        self._after_write()

    def _after_write(self) -> None:
        # The write is committed; a failed re-read must not report it as failed.
        try:
            self.refresh()
        except BackendError as exc:
            logger.warning("Refresh after write failed: %s", exc)
