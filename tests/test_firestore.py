"""
tests/test_firestore.py - Bet Ledger
=====================================
Tests for ledger/firestore.py. No network: a FakeSession replays canned
responses and records every request made.

Run: pytest tests/test_firestore.py -v
"""

import base64
import json
import pytest
import sys
import os
import threading
import time
from datetime import date
from unittest.mock import patch

import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from ledger.firestore import (
    CUSTOM_TOKEN_URL,
    FIRESTORE_URL,
    REFRESH_URL,
    SIGN_UP_URL,
    FirestoreBackend,
    _request_with_backoff,
    _uid_from_token,
    decode_document,
    encode_fields,
)
from ledger.models import LOST, WON, Bet, ValidationError
from ledger.store import BackendError

ROOT = "projects/proj/databases/(default)/documents"
COLLECTION = f"{ROOT}/artifacts/app/users/uid1/bets"


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body if body is not None else {}
        self.text = json.dumps(self._body)

    def json(self):
        return self._body


class FakeSession:
    """Returns queued responses in order; an Exception in the queue is raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


def _sign_up_response(uid="uid1"):
    return FakeResponse(200, {
        "idToken": "tok1", "refreshToken": "ref1", "expiresIn": "3600", "localId": uid,
    })


def _document(bet_id, result="Won", day="2025-03-01"):
    return {
        "name": f"{COLLECTION}/{bet_id}",
        "fields": {
            "date": {"stringValue": day},
            "sport": {"stringValue": "NBA"},
            "details": {"stringValue": f"bet {bet_id}"},
            "stake": {"doubleValue": 100.0},
            "odds": {"doubleValue": 2.0},
            "result": {"stringValue": result},
            "notes": {"stringValue": ""},
        },
    }


def _bet(bet_id, result=WON):
    return Bet(bet_id, date(2025, 3, 1), "NBA", f"bet {bet_id}", 100.0, 2.0, result, "")


def _jwt(claims):
    payload = base64.urlsafe_b64encode(json.dumps(claims).encode()).rstrip(b"=").decode()
    return f"header.{payload}.signature"


def _backend(*responses, **kwargs):
    session = FakeSession(*responses)
    return FirestoreBackend("key", "proj", app_id="app", session=session, **kwargs), session


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

class TestEncoding:
    def test_encode_fields(self):
        fields = encode_fields(_bet("a"))
        assert fields["stake"] == {"doubleValue": 100.0}
        assert fields["date"] == {"stringValue": "2025-03-01"}
        assert fields["result"] == {"stringValue": "Won"}
        assert "id" not in fields

    def test_decode_document_uses_name_as_id(self):
        bet = decode_document(_document("abc123"))
        assert bet == _bet("abc123")

    def test_decode_integer_values(self):
        doc = _document("a")
        doc["fields"]["stake"] = {"integerValue": "50"}
        assert decode_document(doc).stake == 50.0

    def test_decode_invalid_document_raises(self):
        doc = _document("a", result="Maybe")
        with pytest.raises(ValidationError):
            decode_document(doc)


class TestUidFromToken:
    def test_user_id_claim(self):
        assert _uid_from_token(_jwt({"user_id": "u42", "sub": "other"})) == "u42"

    def test_sub_fallback(self):
        assert _uid_from_token(_jwt({"sub": "u7"})) == "u7"

    def test_malformed(self):
        with pytest.raises(BackendError):
            _uid_from_token("not-a-jwt")


# ---------------------------------------------------------------------------
# Backoff
# ---------------------------------------------------------------------------

class TestRequestWithBackoff:
    def test_success_first_try(self):
        session = FakeSession(FakeResponse(200, {"ok": True}))
        response = _request_with_backoff(session, "GET", "https://x")
        assert response.json() == {"ok": True}
        assert session.calls[0][2]["timeout"] == 15

    def test_client_error_not_retried(self):
        session = FakeSession(FakeResponse(404, {"error": {"message": "NOT_FOUND"}}))
        with patch("ledger.firestore.time.sleep") as mock_sleep:
            with pytest.raises(BackendError, match="NOT_FOUND"):
                _request_with_backoff(session, "GET", "https://x")
        assert len(session.calls) == 1
        mock_sleep.assert_not_called()

    def test_server_error_retried_then_succeeds(self):
        session = FakeSession(FakeResponse(503), FakeResponse(200, {"ok": True}))
        with patch("ledger.firestore.time.sleep") as mock_sleep:
            response = _request_with_backoff(session, "GET", "https://x")
        assert response.status_code == 200
        mock_sleep.assert_called_once_with(1.0)

    def test_exponential_delays_then_gives_up(self):
        session = FakeSession(
            requests.exceptions.Timeout(),
            requests.exceptions.ConnectionError(),
            FakeResponse(429),
        )
        with patch("ledger.firestore.time.sleep") as mock_sleep:
            with pytest.raises(BackendError):
                _request_with_backoff(session, "GET", "https://x")
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]
        assert len(session.calls) == 3

    def test_other_request_errors_not_retried(self):
        session = FakeSession(requests.exceptions.InvalidURL("bad"))
        with pytest.raises(BackendError):
            _request_with_backoff(session, "GET", "bad")
        assert len(session.calls) == 1


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class TestSignIn:
    def test_missing_credentials(self):
        with pytest.raises(BackendError):
            FirestoreBackend("", "proj")
        with pytest.raises(BackendError):
            FirestoreBackend("key", "")

    def test_anonymous_sign_in(self):
        backend, session = _backend(_sign_up_response())
        assert backend.sign_in() == "uid1"
        method, url, kwargs = session.calls[0]
        assert (method, url) == ("POST", SIGN_UP_URL)
        assert kwargs["params"] == {"key": "key"}
        assert kwargs["json"] == {"returnSecureToken": True}
        assert backend.collection_path == "artifacts/app/users/uid1/bets"

    def test_custom_token_sign_in(self):
        id_token = _jwt({"user_id": "u42"})
        backend, session = _backend(
            FakeResponse(200, {"idToken": id_token, "refreshToken": "r", "expiresIn": "3600"}),
            custom_token="custom-abc",
        )
        assert backend.sign_in() == "u42"
        method, url, kwargs = session.calls[0]
        assert url == CUSTOM_TOKEN_URL
        assert kwargs["json"]["token"] == "custom-abc"

    def test_concurrent_callers_sign_in_once(self):
        class SlowSession(FakeSession):
            def request(self, method, url, **kwargs):
                time.sleep(0.05)
                return super().request(method, url, **kwargs)

        session = SlowSession(_sign_up_response())
        backend = FirestoreBackend("key", "proj", app_id="app", session=session)
        headers, errors = [], []

        def _worker():
            try:
                headers.append(backend._auth_headers())
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        workers = [threading.Thread(target=_worker) for _ in range(4)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert errors == []
        assert len(session.calls) == 1
        assert headers == [{"Authorization": "Bearer tok1"}] * 4

    def test_concurrent_callers_refresh_once(self):
        backend, session = _backend(
            _sign_up_response(),
            FakeResponse(200, {"id_token": "tok2", "refresh_token": "ref2", "expires_in": "3600"}),
        )
        backend.sign_in()
        backend._expires_at = 0.0
        workers = [threading.Thread(target=backend._auth_headers) for _ in range(4)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()
        assert [call[1] for call in session.calls] == [SIGN_UP_URL, REFRESH_URL]
        assert backend._auth_headers() == {"Authorization": "Bearer tok2"}

    def test_expired_token_is_refreshed(self):
        backend, session = _backend(
            _sign_up_response(),
            FakeResponse(200, {"id_token": "tok2", "refresh_token": "ref2", "expires_in": "3600"}),
            FakeResponse(200, {}),
        )
        backend.sign_in()
        backend._expires_at = 0.0
        backend.list_bets()
        method, url, kwargs = session.calls[1]
        assert url == REFRESH_URL
        assert kwargs["data"] == {"grant_type": "refresh_token", "refresh_token": "ref1"}
        assert session.calls[2][2]["headers"] == {"Authorization": "Bearer tok2"}


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

class TestListBets:
    def test_signs_in_lazily_and_paginates(self):
        backend, session = _backend(
            _sign_up_response(),
            FakeResponse(200, {"documents": [_document("a")], "nextPageToken": "p2"}),
            FakeResponse(200, {"documents": [_document("b", result="Lost")]}),
        )
        bets = backend.list_bets()
        assert [b.id for b in bets] == ["a", "b"]
        assert bets[1].result == LOST
        first_page, second_page = session.calls[1], session.calls[2]
        assert first_page[1] == f"{FIRESTORE_URL}/{COLLECTION}"
        assert "pageToken" not in first_page[2]["params"]
        assert second_page[2]["params"]["pageToken"] == "p2"
        assert first_page[2]["headers"] == {"Authorization": "Bearer tok1"}

    def test_empty_collection(self):
        backend, _ = _backend(_sign_up_response(), FakeResponse(200, {}))
        assert backend.list_bets() == []

    def test_invalid_documents_skipped(self):
        backend, _ = _backend(
            _sign_up_response(),
            FakeResponse(200, {"documents": [_document("a"), _document("bad", day="??")]}),
        )
        assert [b.id for b in backend.list_bets()] == ["a"]


class TestRefresh:
    def test_publishes_only_on_change(self):
        page = {"documents": [_document("b"), _document("a")]}
        backend, _ = _backend(_sign_up_response(), FakeResponse(200, page), FakeResponse(200, page))
        sub = backend.subscribe()
        assert sub.get(timeout=0.1) == ()
        assert backend.refresh() is True
        assert [b.id for b in sub.get(timeout=0.1)] == ["a", "b"]
        assert backend.refresh() is False
        assert sub.get(timeout=0.05) is None


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

class TestWrites:
    def test_create_posts_with_document_id(self):
        backend, session = _backend(
            _sign_up_response(),
            FakeResponse(200, _document("a")),
            FakeResponse(200, {"documents": [_document("a")]}),
        )
        assert backend.create(_bet("a")) == "a"
        method, url, kwargs = session.calls[1]
        assert (method, url) == ("POST", f"{FIRESTORE_URL}/{COLLECTION}")
        assert kwargs["params"] == {"documentId": "a"}
        assert kwargs["json"]["fields"]["details"] == {"stringValue": "bet a"}
        assert [b.id for b in backend.subscribe().latest()] == ["a"]

    def test_create_many_single_commit(self):
        backend, session = _backend(
            _sign_up_response(),
            FakeResponse(200, {"writeResults": [{}, {}]}),
            FakeResponse(200, {"documents": [_document("a"), _document("b")]}),
        )
        assert backend.create_many([_bet("a"), _bet("b")]) == ["a", "b"]
        method, url, kwargs = session.calls[1]
        assert url == f"{FIRESTORE_URL}/{ROOT}:commit"
        writes = kwargs["json"]["writes"]
        assert [w["update"]["name"] for w in writes] == [f"{COLLECTION}/a", f"{COLLECTION}/b"]
        assert all(w["currentDocument"] == {"exists": False} for w in writes)

    def test_create_many_failure_raises(self):
        backend, session = _backend(
            _sign_up_response(),
            FakeResponse(409, {"error": {"message": "ALREADY_EXISTS"}}),
        )
        with pytest.raises(BackendError, match="ALREADY_EXISTS"):
            backend.create_many([_bet("a")])
        assert len(session.calls) == 2

    def test_create_many_empty(self):
        backend, session = _backend()
        assert backend.create_many([]) == []
        assert session.calls == []

    def test_update_requires_existing_document(self):
        backend, session = _backend(
            _sign_up_response(),
            FakeResponse(200, _document("a", result="Lost")),
            FakeResponse(200, {"documents": [_document("a", result="Lost")]}),
        )
        backend.update("a", _bet("a", result=LOST))
        method, url, kwargs = session.calls[1]
        assert (method, url) == ("PATCH", f"{FIRESTORE_URL}/{COLLECTION}/a")
        assert kwargs["params"] == {"currentDocument.exists": "true"}

    def test_delete_missing_raises(self):
        backend, _ = _backend(
            _sign_up_response(),
            FakeResponse(404, {"error": {"message": "NOT_FOUND"}}),
        )
        with pytest.raises(BackendError, match="NOT_FOUND"):
            backend.delete("ghost")

    def test_failed_refresh_after_write_is_not_an_error(self):
        backend, _ = _backend(
            _sign_up_response(),
            FakeResponse(200, {}),
            FakeResponse(403, {"error": {"message": "PERMISSION_DENIED"}}),
        )
        backend.delete("a")

    def test_close(self):
        backend, session = _backend()
        sub = backend.subscribe()
        backend.close()
        assert session.closed is True
        assert sub.active is False
