"""
tests/test_config.py - Bet Ledger
==================================
Tests for ledger/config.py. Environment is controlled with monkeypatch;
Streamlit secrets are patched out so a local secrets file never leaks in.

Run: pytest tests/test_config.py -v
"""

import pytest
import sys
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from ledger.config import (
    Settings,
    build_backend,
    get_setting,
    load_settings,
    parse_timezone,
)
from ledger.firestore import FirestoreBackend
from ledger.models import REPORTING_TZ
from ledger.store import BackendError, SqliteBackend

_VARS = (
    "LEDGER_BACKEND", "LEDGER_DB_PATH", "LEDGER_USER_ID", "LEDGER_TIMEZONE",
    "LEDGER_CURRENCY", "LEDGER_SYNC_SECONDS", "FIREBASE_API_KEY",
    "FIREBASE_PROJECT_ID", "LEDGER_APP_ID", "FIREBASE_AUTH_TOKEN",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)
    with patch.dict(sys.modules, {"streamlit": None}):
        yield


class TestGetSetting:
    def test_env_wins(self, monkeypatch):
        monkeypatch.setenv("LEDGER_USER_ID", "alice")
        assert get_setting("LEDGER_USER_ID", "local") == "alice"

    def test_default_when_unset(self):
        assert get_setting("LEDGER_USER_ID", "local") == "local"

    def test_empty_env_falls_back(self, monkeypatch):
        monkeypatch.setenv("LEDGER_USER_ID", "")
        assert get_setting("LEDGER_USER_ID", "local") == "local"


class TestParseTimezone:
    @pytest.mark.parametrize("text,hours", [
        ("+08:00", 8), ("UTC+8", 8), ("GMT-05:00", -5), ("utc+0530", 5.5),
    ])
    def test_offsets(self, text, hours):
        tz = parse_timezone(text)
        assert tz.utcoffset(None) == timedelta(hours=hours)

    def test_iana_zone(self):
        tz = parse_timezone("Asia/Manila")
        assert datetime(2025, 3, 1, tzinfo=tz).utcoffset() == timedelta(hours=8)

    @pytest.mark.parametrize("text", ["Mars/Olympus", "+25:00"])
    def test_rejects_unknown(self, text):
        with pytest.raises(ValueError):
            parse_timezone(text)


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings()
        assert settings.backend == "sqlite"
        assert settings.user_id == "local"
        assert settings.tz is REPORTING_TZ
        assert settings.currency == "PHP"
        assert settings.currency_symbol == "₱"
        assert settings.sync_seconds == 15
        assert settings.app_id == "default-app-id"
        assert settings.firebase_api_key is None

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("LEDGER_BACKEND", "Firestore")
        monkeypatch.setenv("LEDGER_TIMEZONE", "UTC-5")
        monkeypatch.setenv("LEDGER_CURRENCY", "usd")
        monkeypatch.setenv("LEDGER_SYNC_SECONDS", "30")
        monkeypatch.setenv("FIREBASE_API_KEY", "k")
        monkeypatch.setenv("FIREBASE_PROJECT_ID", "p")
        settings = load_settings()
        assert settings.backend == "firestore"
        assert settings.tz == timezone(timedelta(hours=-5))
        assert settings.currency_symbol == "$"
        assert settings.sync_seconds == 30
        assert settings.firebase_project_id == "p"

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("LEDGER_BACKEND", "mongo")
        with pytest.raises(ValueError, match="LEDGER_BACKEND"):
            load_settings()

    @pytest.mark.parametrize("value", ["soon", "0", "-3"])
    def test_bad_sync_interval(self, monkeypatch, value):
        monkeypatch.setenv("LEDGER_SYNC_SECONDS", value)
        with pytest.raises(ValueError, match="LEDGER_SYNC_SECONDS"):
            load_settings()

    def test_unknown_currency_shows_code(self, monkeypatch):
        monkeypatch.setenv("LEDGER_CURRENCY", "EUR")
        assert load_settings().currency_symbol == "EUR"

    def test_bad_timezone(self, monkeypatch):
        monkeypatch.setenv("LEDGER_TIMEZONE", "Nowhere/Special")
        with pytest.raises(ValueError):
            load_settings()


class TestBuildBackend:
    def test_sqlite(self, tmp_path):
        backend = build_backend(Settings(db_path=str(tmp_path / "l.db"), user_id="u1"))
        assert isinstance(backend, SqliteBackend)
        assert backend.user_id == "u1"
        backend.close()

    def test_firestore(self):
        backend = build_backend(Settings(
            backend="firestore", firebase_api_key="k", firebase_project_id="p", app_id="a",
        ))
        assert isinstance(backend, FirestoreBackend)
        assert backend.app_id == "a"

    def test_firestore_without_credentials(self):
        with pytest.raises(BackendError):
            build_backend(Settings(backend="firestore"))
