"""
ledger/config.py - Bet Ledger
==============================
Runtime settings. Environment variables first, then Streamlit secrets
(for Streamlit Cloud deployments), then defaults.

| Setting              | Env var               | Default                |
|----------------------|-----------------------|------------------------|
| backend              | LEDGER_BACKEND        | sqlite                 |
| db_path              | LEDGER_DB_PATH        | data/ledger.db         |
| user_id              | LEDGER_USER_ID        | local                  |
| reporting timezone   | LEDGER_TIMEZONE       | UTC+08:00              |
| currency             | LEDGER_CURRENCY       | PHP                    |
| sync interval (s)    | LEDGER_SYNC_SECONDS   | 15                     |
| Firebase API key     | FIREBASE_API_KEY      | -                      |
| Firebase project     | FIREBASE_PROJECT_ID   | -                      |
| app id               | LEDGER_APP_ID         | default-app-id         |
| custom auth token    | FIREBASE_AUTH_TOKEN   | - (anonymous sign-in)  |

NEVER hardcode API keys.
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ledger.models import REPORTING_TZ
from ledger.store import DEFAULT_DB_PATH, DEFAULT_USER_ID

logger = logging.getLogger(__name__)

BACKENDS = ("sqlite", "firestore")

CURRENCIES: dict[str, str] = {
    "USD": "$",
    "PHP": "₱",
    "THB": "฿",
    "MYR": "RM",
    "HKD": "HK$",
}

_OFFSET_RE = re.compile(r"^(?:UTC|GMT)?\s*([+-])(\d{1,2})(?::?(\d{2}))?$", re.IGNORECASE)


@dataclass(frozen=True)
class Settings:
    backend: str = "sqlite"
    db_path: str = DEFAULT_DB_PATH
    user_id: str = DEFAULT_USER_ID
    tz: tzinfo = REPORTING_TZ
    currency: str = "PHP"
    sync_seconds: int = 15
    firebase_api_key: Optional[str] = None
    firebase_project_id: Optional[str] = None
    app_id: str = "default-app-id"
    auth_token: Optional[str] = None

    @property
    def currency_symbol(self) -> str:
        return CURRENCIES.get(self.currency, self.currency)


def get_setting(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Read one setting.

    Checks:
    1. Environment variable (primary)
    2. Streamlit secrets (only if streamlit is importable and a secrets file exists)
    """
    value = os.environ.get(name)
    if value:
        return value

    try:
        import streamlit as st
        if hasattr(st, "secrets") and name in st.secrets:
            return str(st.secrets[name])
    except (ImportError, Exception):
        pass

    return default


def parse_timezone(text: str) -> tzinfo:
    """
    "+08:00", "UTC+8", "GMT-05:30" -> fixed offset; anything else -> IANA zone.

    Raises ValueError for unknown zones.
    """
    match = _OFFSET_RE.match(text.strip())
    if match:
        sign, hours, minutes = match.groups()
        offset = timedelta(hours=int(hours), minutes=int(minutes or 0))
        if offset > timedelta(hours=14):
            raise ValueError(f"UTC offset out of range: {text!r}")
        if sign == "-":
            offset = -offset
        return timezone(offset)
    try:
        return ZoneInfo(text.strip())
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"unknown timezone: {text!r}") from exc


def load_settings() -> Settings:
    """Build Settings from the environment. Raises ValueError on bad values."""
    backend = (get_setting("LEDGER_BACKEND", "sqlite") or "sqlite").strip().lower()
    if backend not in BACKENDS:
        raise ValueError(f"LEDGER_BACKEND must be one of {', '.join(BACKENDS)}, got {backend!r}")

    tz_text = get_setting("LEDGER_TIMEZONE")
    tz = parse_timezone(tz_text) if tz_text else REPORTING_TZ

    currency = (get_setting("LEDGER_CURRENCY", "PHP") or "PHP").strip().upper()
    if currency not in CURRENCIES:
        logger.warning("Unknown currency %s, showing the code instead of a symbol", currency)

    sync_text = get_setting("LEDGER_SYNC_SECONDS", "15")
    try:
        sync_seconds = int(sync_text)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"LEDGER_SYNC_SECONDS must be an integer, got {sync_text!r}") from exc
    if sync_seconds < 1:
        raise ValueError("LEDGER_SYNC_SECONDS must be at least 1")

    return Settings(
        backend=backend,
        db_path=get_setting("LEDGER_DB_PATH", DEFAULT_DB_PATH),
        user_id=get_setting("LEDGER_USER_ID", DEFAULT_USER_ID),
        tz=tz,
        currency=currency,
        sync_seconds=sync_seconds,
        firebase_api_key=get_setting("FIREBASE_API_KEY"),
        firebase_project_id=get_setting("FIREBASE_PROJECT_ID"),
        app_id=get_setting("LEDGER_APP_ID", "default-app-id"),
        auth_token=get_setting("FIREBASE_AUTH_TOKEN"),
    )


def build_backend(settings: Settings):
    """Construct the backend named by settings.backend."""
    if settings.backend == "firestore":
        from ledger.firestore import FirestoreBackend
        return FirestoreBackend(
            api_key=settings.firebase_api_key,
            project_id=settings.firebase_project_id,
            app_id=settings.app_id,
            custom_token=settings.auth_token,
        )

    from ledger.store import SqliteBackend
    return SqliteBackend(db_path=settings.db_path, user_id=settings.user_id)
