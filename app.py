"""
app.py - Bet Ledger Streamlit Entry Point

Multi-page navigation via st.navigation() (Streamlit 1.36+).
Settings, backend and session are built once per process via st.cache_resource.
The Firestore sync poller is started once per process (start_sync is idempotent).

Design principles:
- Dark terminal aesthetic: #0e1117 bg, amber accent (#f59e0b)
- st.html() for custom cards (not st.markdown - style tags sandboxed)
- Inline styles only - Streamlit strips <style> blocks in components

Run: streamlit run app.py
"""

import logging
import sys
from pathlib import Path

import streamlit as st

# ---------------------------------------------------------------------------
# Path setup - allow 'from ledger.xxx import' regardless of cwd
# ---------------------------------------------------------------------------
ROOT = Path(__file__).parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ledger.config import CURRENCIES, build_backend, load_settings  # noqa: E402
from ledger.session import LedgerSession  # noqa: E402

# ---------------------------------------------------------------------------
# Logging setup - write to logs/error.log
# ---------------------------------------------------------------------------
LOG_DIR = ROOT / "logs"
LOG_DIR.mkdir(exist_ok=True)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    handlers=[
        logging.FileHandler(LOG_DIR / "error.log"),
        logging.StreamHandler(),
    ],
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Page config - must be first Streamlit call
# ---------------------------------------------------------------------------
st.set_page_config(
    page_title="Bet Ledger",
    page_icon="📒",
    layout="wide",
    initial_sidebar_state="expanded",
    menu_items={
        "Get Help": None,
        "Report a bug": None,
        "About": "Bet Ledger - Personal Sports Betting Tracker",
    },
)


# ---------------------------------------------------------------------------
# Session - one backend + subscription per process
# ---------------------------------------------------------------------------
@st.cache_resource
def _open_session():
    settings = load_settings()
    backend = build_backend(settings)
    if settings.backend == "firestore":
        from ledger.scheduler import start_sync
        backend.refresh()
        start_sync(backend, interval_seconds=settings.sync_seconds)
    logger.info("Ledger session opened (backend=%s)", settings.backend)
    return settings, LedgerSession(backend, tz=settings.tz)


try:
    settings, session = _open_session()
except Exception as exc:  # noqa: BLE001
    logger.error("Could not open ledger: %s", exc)
    st.error(f"Could not connect to the database: {exc}")
    st.stop()

st.session_state["ledger_settings"] = settings
st.session_state["ledger_session"] = session

# ---------------------------------------------------------------------------
# Global CSS injection - minimal, purposeful
# ---------------------------------------------------------------------------
st.markdown(
    """
    <style>
    [data-testid="stSidebar"] {
        background-color: #13161d;
    }
    .block-container {
        padding-top: 1.5rem;
        padding-bottom: 2rem;
    }
    [data-testid="stMetricValue"] {
        font-size: 1.6rem !important;
        font-weight: 700 !important;
    }
    footer { visibility: hidden; }
    </style>
    """,
    unsafe_allow_html=True,
)

# ---------------------------------------------------------------------------
# Sidebar - backend + sync status
# ---------------------------------------------------------------------------
with st.sidebar:
    st.html(
        """
        <div style="
            padding: 12px 0 8px 0;
            border-bottom: 1px solid #2d3139;
            margin-bottom: 12px;
        ">
            <span style="
                font-size: 1.1rem;
                font-weight: 700;
                color: #f59e0b;
                letter-spacing: 0.03em;
            ">📒 BET LEDGER</span>
        </div>
        """
    )

    backend_label = settings.backend.upper()
    user_label = getattr(session.backend, "user_id", None) or "—"
    sync_html = ""
    if settings.backend == "firestore":
        from ledger.scheduler import get_status
        status = get_status()
        last_sync = status["last_sync_time"]
        sync_str = last_sync.strftime("%H:%M:%S UTC") if last_sync else "—"
        err_count = status["sync_error_count"]
        sync_html = f"""
            <div>Sync: every {settings.sync_seconds}s</div>
            <div>Last: {sync_str}</div>
            {f'<div style="color:#ef4444;">⚠ {err_count} sync errors</div>' if err_count else ''}
        """

    st.html(
        f"""
        <div style="
            background: #1a1d23;
            border: 1px solid #2d3139;
            border-radius: 6px;
            padding: 10px 12px;
            margin-bottom: 12px;
            font-size:0.65rem; color:#6b7280; line-height:1.6;
        ">
            <div style="color:#22c55e; font-weight:600; letter-spacing:0.1em;">{backend_label}</div>
            <div>User ID: {user_label}</div>
            <div>Bets stored: {len(session.snapshot())}</div>
            {sync_html}
        </div>
        """
    )

    currency_codes = list(CURRENCIES)
    if settings.currency not in CURRENCIES:
        currency_codes.append(settings.currency)
    currency = st.selectbox(
        "Currency",
        currency_codes,
        index=currency_codes.index(settings.currency),
        key="ledger_currency",
    )
    st.session_state["currency_symbol"] = CURRENCIES.get(currency, currency)

    if settings.backend == "firestore":
        if st.button("↺  Sync Now", use_container_width=True, type="secondary"):
            from ledger.scheduler import trigger_sync_now
            with st.spinner("Syncing..."):
                changed = trigger_sync_now(session.backend)
            st.success("Updated from server." if changed else "Already up to date.")

# ---------------------------------------------------------------------------
# Multi-page navigation
# ---------------------------------------------------------------------------
pages = [
    st.Page("pages/01_dashboard.py", title="Dashboard", icon="📊", default=True),
    st.Page("pages/02_log_bet.py",   title="Log a Bet", icon="📝"),
]

pg = st.navigation(pages)
pg.run()
