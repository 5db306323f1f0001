"""
pages/02_log_bet.py - Log a Bet

Single-bet entry form. The date defaults to today in the reporting
timezone, not the server's local zone.

Validation happens in LedgerSession.add_bet(); this page only renders the
notice it returns.
"""

import sys
from pathlib import Path

import streamlit as st

ROOT = Path(__file__).parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ledger.analytics import current_day  # noqa: E402
from ledger.models import PENDING, RESULTS  # noqa: E402

SPORT_OPTIONS = ["Basketball", "Football", "Soccer", "Tennis", "Baseball", "Hockey", "Esports", "Other"]

settings = st.session_state["ledger_settings"]
session = st.session_state["ledger_session"]

st.title("📝 Log a Bet")

with st.form("log_bet_form", clear_on_submit=True):
    f1, f2 = st.columns(2)
    with f1:
        date_input = st.date_input("Date", value=current_day(tz=settings.tz), key="lb_date")
    with f2:
        sport_input = st.selectbox("Sport", SPORT_OPTIONS, key="lb_sport")

    details_input = st.text_input(
        "Bet Details",
        placeholder="e.g. Lakers ML vs Celtics",
        key="lb_details",
    )

    p1, p2, p3 = st.columns(3)
    with p1:
        stake_input = st.number_input(
            f"Stake ({st.session_state.get('currency_symbol', settings.currency_symbol)})",
            value=100.0, step=10.0,
            min_value=0.0, key="lb_stake",
        )
    with p2:
        odds_input = st.number_input(
            "Odds (decimal)", value=1.90, step=0.05, min_value=0.0,
            format="%.2f", key="lb_odds",
        )
    with p3:
        result_input = st.selectbox(
            "Result", RESULTS, index=RESULTS.index(PENDING), key="lb_result",
        )

    notes_input = st.text_area("Notes (optional)", key="lb_notes")

    submitted = st.form_submit_button("Log Bet", use_container_width=True, type="primary")

if submitted:
    outcome = session.add_bet({
        "date": date_input,
        "sport": sport_input,
        "details": details_input,
        "stake": stake_input,
        "odds": odds_input,
        "result": result_input,
        "notes": notes_input,
    })
    if outcome.ok:
        st.success(outcome.message)
    else:
        st.error(outcome.message)
        for reason in outcome.reasons:
            st.caption(f"• {reason}")
