"""
ledger/scheduler.py - APScheduler in-process background sync

Polls the configured backend every N seconds so changes made from another
device show up in this session. Each poll calls backend.refresh(), which
publishes a new snapshot only when the collection changed.
Designed for Streamlit: guarded against re-initialization on every rerun.

Usage in app.py:
    from ledger.scheduler import start_sync, get_status
    start_sync(backend, interval_seconds=15)

The SQLite backend publishes synchronously on every write and does not need
this poller.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level state - persists across Streamlit reruns in the same process
# ---------------------------------------------------------------------------
_scheduler: Optional[BackgroundScheduler] = None
_backend: Any = None
_last_sync_time: Optional[datetime] = None
_last_sync_changed: bool = False
_sync_count: int = 0
_sync_error_count: int = 0
_sync_errors: list = []        # last N error strings (capped at 10)


# ---------------------------------------------------------------------------
# Internal sync job
# ---------------------------------------------------------------------------
def _sync_backend(backend: Any = None) -> None:
    """
    Called by APScheduler every interval.
    Errors are logged and counted but never bubble up.
    """
    global _last_sync_time, _last_sync_changed, _sync_count, _sync_error_count

    target = backend or _backend
    if target is None:
        logger.debug("Sync skipped: no backend configured")
        return

    try:
        changed = target.refresh()
        _last_sync_time = datetime.now(timezone.utc)
        _last_sync_changed = bool(changed)
        _sync_count += 1
        if changed:
            logger.info("Sync picked up remote changes")
    except Exception as exc:  # noqa: BLE001
        _last_sync_changed = False
        _sync_error_count += 1
        _sync_errors.append(f"{datetime.now(timezone.utc).isoformat()} - {exc}")
        if len(_sync_errors) > 10:
            _sync_errors.pop(0)
        logger.error("Sync error #%d: %s", _sync_error_count, exc)


def _on_job_event(event) -> None:
    """Log APScheduler job events for observability."""
    if event.exception:
        logger.error("Job %s raised: %s", event.job_id, event.exception)
    else:
        logger.debug("Job %s executed OK", event.job_id)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def start_sync(backend: Any, interval_seconds: int = 15) -> None:
    """
    Start polling `backend`.

    Safe to call multiple times - returns immediately if already running.

    Args:
        backend:          Object with a refresh() -> bool method.
        interval_seconds: Poll interval. Default 15.
    """
    global _scheduler, _backend

    if _scheduler is not None and _scheduler.running:
        logger.debug("Sync already running - skipping re-init")
        return

    _backend = backend
    _scheduler = BackgroundScheduler(
        job_defaults={"misfire_grace_time": 30, "coalesce": True, "max_instances": 1},
        timezone="UTC",
    )
    _scheduler.add_listener(_on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
    _scheduler.add_job(
        _sync_backend,
        trigger="interval",
        seconds=interval_seconds,
        id="backend_sync",
        replace_existing=True,
        kwargs={"backend": backend},
    )
    _scheduler.start()
    logger.info("Sync started (interval=%ds)", interval_seconds)


def stop_sync() -> None:
    """Shut down the poller. Safe to call even if not running."""
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Sync stopped")
    _scheduler = None


def trigger_sync_now(backend: Any = None) -> bool:
    """
    Run one sync outside the schedule. Used by the "Sync Now" button.

    Returns:
        True if the poll picked up a change.
    """
    _sync_backend(backend)
    return _last_sync_changed


def get_status() -> dict:
    """
    Poller state for the sidebar.

    Returns:
        {
            "running": bool,
            "last_sync_time": datetime | None,
            "last_sync_changed": bool,
            "sync_count": int,
            "sync_error_count": int,
            "recent_errors": [str],
        }
    """
    return {
        "running": is_running(),
        "last_sync_time": _last_sync_time,
        "last_sync_changed": _last_sync_changed,
        "sync_count": _sync_count,
        "sync_error_count": _sync_error_count,
        "recent_errors": list(_sync_errors),
    }


def is_running() -> bool:
    return _scheduler is not None and _scheduler.running


def reset_state() -> None:
    """
    Reset all module-level state.
    Intended for testing only - never call from production code.
    """
    global _scheduler, _backend, _last_sync_time, _last_sync_changed
    global _sync_count, _sync_error_count, _sync_errors

    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)

    _scheduler = None
    _backend = None
    _last_sync_time = None
    _last_sync_changed = False
    _sync_count = 0
    _sync_error_count = 0
    _sync_errors = []
