"""
ledger/channel.py - Bet Ledger
===============================
Snapshot channel between a backend and its readers.

A backend publishes the full collection as an immutable tuple after every
change. Readers hold a Subscription: they can read the latest snapshot,
block for the next one, iterate, and cancel. A new Subscription receives
the current snapshot immediately, so it never starts empty when data exists.

Each Subscription holds at most one undelivered snapshot. A publish that
arrives before the reader has taken the previous one replaces it: every
snapshot is the full collection, so readers only ever need the newest.

Thread-safe: the Firestore sync job publishes from the APScheduler thread
while Streamlit reads from the script thread.
"""

import logging
import queue
import threading
from typing import Callable, Iterator, Optional

from ledger.models import Bet

logger = logging.getLogger(__name__)

Snapshot = tuple[Bet, ...]
Listener = Callable[[Snapshot], None]


class Subscription:
    """A cancellable stream of snapshots. Create via SnapshotChannel.subscribe()."""

    def __init__(self, channel: "SnapshotChannel", listener: Optional[Listener] = None) -> None:
        self._channel = channel
        self._listener = listener
        self._queue: "queue.Queue[Optional[Snapshot]]" = queue.Queue(maxsize=1)
        self._slot_lock = threading.Lock()
        self._latest: Snapshot = ()
        self._cancelled = threading.Event()

    @property
    def active(self) -> bool:
        return not self._cancelled.is_set()

    def latest(self) -> Snapshot:
        """Most recent snapshot delivered to this subscription."""
        return self._latest

    def get(self, timeout: Optional[float] = None) -> Optional[Snapshot]:
        """
        Next undelivered snapshot.

        Returns None on timeout or once the subscription is cancelled.
        """
        if not self.active:
            return None
        try:
            snapshot = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        return snapshot if self.active else None

    def __iter__(self) -> Iterator[Snapshot]:
        while True:
            snapshot = self.get()
            if snapshot is None:
                return
            yield snapshot

    def cancel(self) -> None:
        """Stop receiving snapshots. Safe to call more than once."""
        if not self.active:
            return
        self._cancelled.set()
        self._channel._remove(self)
        self._replace_pending(None)  # wake a blocked get()

    def pending(self) -> int:
        """Number of undelivered snapshots (0 or 1)."""
        return self._queue.qsize()

    def _replace_pending(self, item: Optional[Snapshot]) -> None:
        with self._slot_lock:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                pass
            self._queue.put_nowait(item)

    def _deliver(self, snapshot: Snapshot) -> None:
        if not self.active:
            return
        self._latest = snapshot
        self._replace_pending(snapshot)
        if self._listener is not None:
            try:
                self._listener(snapshot)
            except Exception as exc:  # noqa: BLE001
                logger.error("Snapshot listener raised: %s", exc)


class SnapshotChannel:
    """Fan-out of snapshots to every active subscription."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription] = []
        self._current: Snapshot = ()

    @property
    def current(self) -> Snapshot:
        return self._current

    def subscribe(self, listener: Optional[Listener] = None) -> Subscription:
        subscription = Subscription(self, listener)
        with self._lock:
            self._subscriptions.append(subscription)
            current = self._current
        subscription._deliver(current)
        return subscription

    def publish(self, bets) -> Snapshot:
        """Publish a new snapshot (any iterable of Bets) to all subscribers."""
        snapshot: Snapshot = tuple(bets)
        with self._lock:
            self._current = snapshot
            subscribers = list(self._subscriptions)
        for subscription in subscribers:
            subscription._deliver(snapshot)
        return snapshot

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def close(self) -> None:
        """Cancel every subscription."""
        with self._lock:
            subscribers = list(self._subscriptions)
        for subscription in subscribers:
            subscription.cancel()

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
