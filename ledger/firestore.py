"""
ledger/firestore.py - Bet Ledger
=================================
Cloud Firestore backend over the REST API. No UI, no analytics.

Responsibilities:
- Sign in through the Identity Toolkit REST API (anonymous, or a custom token)
- Refresh the ID token before it expires (under a lock: the sync job and
  the Streamlit thread share one token)
- CRUD on the signed-in user's bets collection
- Atomic batch insert via documents:commit (all-or-nothing import)
- Publish the collection to the snapshot channel; the sync poller in
  ledger/scheduler.py calls refresh() to pick up changes made elsewhere
- Exponential backoff on transient failures (max 3 attempts)

Collection path (per-user isolation, enforced by security rules):
    artifacts/{app_id}/users/{uid}/bets

Documents store the flat record (date as YYYY-MM-DD, stake/odds as doubles).
Document IDs are the bet IDs.

NEVER hardcode API keys. They come from ledger/config.py.
"""

import base64
import json
import logging
import threading
import time
from typing import Any, Iterable, Optional

import requests

from ledger.channel import SnapshotChannel, Subscription
from ledger.models import Bet, ValidationError, bet_to_record, parse_bet_fields
from ledger.store import BackendError

logger = logging.getLogger(__name__)

FIRESTORE_URL = "https://firestore.googleapis.com/v1"
SIGN_UP_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signUp"
CUSTOM_TOKEN_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signInWithCustomToken"
REFRESH_URL = "https://securetoken.googleapis.com/v1/token"

PAGE_SIZE = 300
REQUEST_TIMEOUT = 15
# Refresh the ID token this many seconds before it expires
TOKEN_REFRESH_MARGIN = 60

# Status codes worth retrying. Everything else fails immediately.
_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


# ---------------------------------------------------------------------------
# HTTP with exponential backoff
# ---------------------------------------------------------------------------

def _request_with_backoff(
    session: Any,
    method: str,
    url: str,
    max_retries: int = 3,
    base_delay: float = 1.0,
    **kwargs: Any,
) -> requests.Response:
    """
    Perform an HTTP request, retrying timeouts, connection errors, 429 and 5xx.

    Unlike a read-only fetch, callers here need to know a write failed, so
    this raises BackendError instead of returning None.
    """
    delay = base_delay
    last_error = ""
    for attempt in range(1, max_retries + 1):
        try:
            response = session.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
            if response.status_code < 400:
                return response
            last_error = f"HTTP {response.status_code}: {_error_message(response)}"
            if response.status_code not in _RETRY_STATUSES:
                logger.error("%s %s failed: %s", method, url, last_error)
                raise BackendError(last_error)
            logger.warning("Attempt %d/%d: %s for %s", attempt, max_retries, last_error, url)
        except requests.exceptions.Timeout:
            last_error = "timeout"
            logger.warning("Attempt %d/%d: Timeout for %s", attempt, max_retries, url)
        except requests.exceptions.ConnectionError:
            last_error = "connection error"
            logger.warning("Attempt %d/%d: Connection error for %s", attempt, max_retries, url)
        except requests.exceptions.RequestException as exc:
            logger.error("%s %s failed: %s", method, url, exc)
            raise BackendError(str(exc)) from exc

        if attempt < max_retries:
            time.sleep(delay)
            delay *= 2

    logger.error("All %d attempts failed for %s %s", max_retries, method, url)
    raise BackendError(last_error or "request failed")


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message", error))
    return str(error or body)[:200]


# ---------------------------------------------------------------------------
# Value encoding
# ---------------------------------------------------------------------------

def encode_fields(bet: Bet) -> dict:
    """Firestore typed `fields` map for a bet (id excluded)."""
    fields = {}
    for name, value in bet_to_record(bet).items():
        if isinstance(value, float):
            fields[name] = {"doubleValue": value}
        else:
            fields[name] = {"stringValue": value}
    return fields


def decode_value(value: dict) -> Any:
    if "stringValue" in value:
        return value["stringValue"]
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "timestampValue" in value:
        return value["timestampValue"]
    if "booleanValue" in value:
        return value["booleanValue"]
    return None


def decode_document(document: dict) -> Bet:
    """Bet from a Firestore document. Raises ValidationError if invalid."""
    bet_id = document.get("name", "").rsplit("/", 1)[-1]
    fields = {name: decode_value(v) for name, v in document.get("fields", {}).items()}
    return parse_bet_fields(fields, bet_id=bet_id)


def _uid_from_token(id_token: str) -> str:
    """Read the user ID claim from an ID token (no signature check needed here)."""
    try:
        payload = id_token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (IndexError, ValueError) as exc:
        raise BackendError(f"malformed ID token: {exc}") from exc
    uid = claims.get("user_id") or claims.get("sub")
    if not uid:
        raise BackendError("ID token has no user id")
    return uid


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class FirestoreBackend:
    """Per-user bet storage in Cloud Firestore."""

    name = "firestore"

    def __init__(
        self,
        api_key: str,
        project_id: str,
        app_id: str = "default-app-id",
        custom_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not api_key or not project_id:
            raise BackendError("FIREBASE_API_KEY and FIREBASE_PROJECT_ID are required")
        self.api_key = api_key
        self.project_id = project_id
        self.app_id = app_id
        self.custom_token = custom_token
        self.session = session or requests.Session()
        self.user_id: Optional[str] = None
        self._id_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._expires_at = 0.0
        self._auth_lock = threading.RLock()
        self._channel = SnapshotChannel()

    # -- auth ---------------------------------------------------------------

    def sign_in(self) -> str:
        """Sign in (custom token if configured, else anonymous). Returns the uid."""
        with self._auth_lock:
            if self.custom_token:
                response = _request_with_backoff(
                    self.session, "POST", CUSTOM_TOKEN_URL,
                    params={"key": self.api_key},
                    json={"token": self.custom_token, "returnSecureToken": True},
                )
            else:
                response = _request_with_backoff(
                    self.session, "POST", SIGN_UP_URL,
                    params={"key": self.api_key},
                    json={"returnSecureToken": True},
                )
            body = response.json()
            self._set_token(body["idToken"], body.get("refreshToken"), body.get("expiresIn"))
            self.user_id = body.get("localId") or _uid_from_token(self._id_token)
            logger.info("Signed in to Firebase as %s", self.user_id)
            return self.user_id

    def _set_token(self, id_token: str, refresh_token: Optional[str], expires_in: Any) -> None:
        self._id_token = id_token
        self._refresh_token = refresh_token or self._refresh_token
        try:
            lifetime = float(expires_in)
        except (TypeError, ValueError):
            lifetime = 3600.0
        self._expires_at = time.monotonic() + lifetime

    def _refresh_id_token(self) -> None:
        response = _request_with_backoff(
            self.session, "POST", REFRESH_URL,
            params={"key": self.api_key},
            data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
        )
        body = response.json()
        self._set_token(body["id_token"], body.get("refresh_token"), body.get("expires_in"))
        logger.debug("Refreshed Firebase ID token")

    def _auth_headers(self) -> dict:
        # The sync job and the UI thread share the token; only one of them renews it.
        with self._auth_lock:
            if self._id_token is None:
                self.sign_in()
            elif time.monotonic() >= self._expires_at - TOKEN_REFRESH_MARGIN:
                if self._refresh_token:
                    self._refresh_id_token()
                else:
                    self.sign_in()
            return {"Authorization": f"Bearer {self._id_token}"}

    # -- paths --------------------------------------------------------------

    @property
    def documents_root(self) -> str:
        return f"projects/{self.project_id}/databases/(default)/documents"

    @property
    def collection_path(self) -> str:
        with self._auth_lock:
            if self.user_id is None:
                self.sign_in()
        return f"artifacts/{self.app_id}/users/{self.user_id}/bets"

    def _collection_url(self) -> str:
        return f"{FIRESTORE_URL}/{self.documents_root}/{self.collection_path}"

    def _document_name(self, bet_id: str) -> str:
        return f"{self.documents_root}/{self.collection_path}/{bet_id}"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        headers = self._auth_headers()
        return _request_with_backoff(self.session, method, url, headers=headers, **kwargs)

    # -- reads --------------------------------------------------------------

    def list_bets(self) -> list[Bet]:
        """All bets in the user's collection. Invalid documents are skipped."""
        url = self._collection_url()
        bets: list[Bet] = []
        page_token = None
        while True:
            params = {"pageSize": PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            body = self._request("GET", url, params=params).json()
            for document in body.get("documents", []):
                try:
                    bets.append(decode_document(document))
                except ValidationError as exc:
                    logger.warning("Skipping document %s: %s", document.get("name"), exc)
            page_token = body.get("nextPageToken")
            if not page_token:
                break
        return bets

    def refresh(self) -> bool:
        """Re-read the collection; publish only if it changed. Returns True if it did."""
        bets = tuple(sorted(self.list_bets(), key=lambda b: (b.date, b.id)))
        if bets == self._channel.current:
            return False
        self._channel.publish(bets)
        return True

    def subscribe(self, listener=None) -> Subscription:
        return self._channel.subscribe(listener)

    # -- writes -------------------------------------------------------------

    def create(self, bet: Bet) -> str:
        self._request(
            "POST", self._collection_url(),
            params={"documentId": bet.id},
            json={"fields": encode_fields(bet)},
        )
        self._after_write()
        return bet.id

    def create_many(self, bets: Iterable[Bet]) -> list[str]:
        """
        Insert a batch in one atomic commit.

        Every write carries an exists=false precondition, so either all
        documents are created or none are.
        """
        bets = list(bets)
        if not bets:
            return []
        writes = [
            {
                "update": {"name": self._document_name(bet.id), "fields": encode_fields(bet)},
                "currentDocument": {"exists": False},
            }
            for bet in bets
        ]
        self._request(
            "POST", f"{FIRESTORE_URL}/{self.documents_root}:commit",
            json={"writes": writes},
        )
        logger.info("Committed %d bet(s) for user %s", len(bets), self.user_id)
        self._after_write()
        return [bet.id for bet in bets]

    def update(self, bet_id: str, bet: Bet) -> None:
        """Full replacement of the document's fields (no update mask)."""
        self._request(
            "PATCH", f"{self._collection_url()}/{bet_id}",
            params={"currentDocument.exists": "true"},
            json={"fields": encode_fields(bet)},
        )
        self._after_write()

    def delete(self, bet_id: str) -> None:
        self._request(
            "DELETE", f"{self._collection_url()}/{bet_id}",
            params={"currentDocument.exists": "true"},
        )
        self._after_write()

    def close(self) -> None:
        self._channel.close()
        self.session.close()

    def _after_write(self) -> None:
        # The write is committed; a failed re-read is left to the sync poller.
        try:
            self.refresh()
        except BackendError as exc:
            logger.warning("Refresh after write failed: %s", exc)
