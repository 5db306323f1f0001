"""
pages/01_dashboard.py - Dashboard

Per rerun:
1. Read period / custom range / sort from the widgets
2. session.view() -> filtered set (stats + chart) and filtered+sorted set (list)
3. Stats tiles, cumulative P/L chart, bet table
4. Edit / delete a bet, export to Excel, import from Excel (with a confirm step)

All numbers are rounded here, at display time only.
"""

import sys
from datetime import timedelta
from pathlib import Path

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

ROOT = Path(__file__).parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ledger.analytics import PERIODS, SORT_CRITERIA, current_day  # noqa: E402
from ledger.formatting import (  # noqa: E402
    RESULT_COLORS,
    format_money,
    format_odds,
    format_pct,
    format_signed_money,
    profit_color,
)
from ledger.models import RESULTS, profit_loss  # noqa: E402
from ledger.spreadsheet import EXPORT_FILENAME, XLSX_MIME  # noqa: E402

PLOTLY_LAYOUT = dict(
    paper_bgcolor="#0e1117",
    plot_bgcolor="#13161d",
    font=dict(color="#d1d5db", size=11, family="monospace"),
    margin=dict(l=40, r=20, t=30, b=40),
    xaxis=dict(gridcolor="#2d3139", linecolor="#2d3139", tickfont=dict(size=10)),
    yaxis=dict(gridcolor="#2d3139", linecolor="#2d3139", tickfont=dict(size=10)),
    hoverlabel=dict(bgcolor="#1a1d23", bordercolor="#2d3139", font_color="#f3f4f6"),
    showlegend=False,
)

settings = st.session_state["ledger_settings"]
session = st.session_state["ledger_session"]
symbol = st.session_state.get("currency_symbol", settings.currency_symbol)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _notify(outcome) -> None:
    if outcome.ok:
        st.success(outcome.message)
    else:
        st.error(outcome.message)
    for reason in outcome.reasons[:20]:
        st.caption(f"• {reason}")


def _build_profit_chart(series: list) -> go.Figure:
    fig = go.Figure()
    if series:
        totals = [total for _, total in series]
        fig.add_trace(
            go.Scatter(
                x=list(range(1, len(series) + 1)),
                y=totals,
                customdata=[day.isoformat() for day, _ in series],
                mode="lines+markers",
                name="Cumulative P/L",
                line=dict(color="#f59e0b", width=2),
                marker=dict(size=5, color="#f59e0b"),
                fill="tozeroy",
                fillcolor="rgba(245, 158, 11, 0.12)",
                hovertemplate="%{customdata}<br>P/L: %{y:,.2f}<extra></extra>",
            )
        )
    layout = dict(PLOTLY_LAYOUT)
    layout["title"] = dict(text="Cumulative Profit/Loss", font=dict(size=12, color="#9ca3af"), x=0)
    layout["height"] = 320
    layout["xaxis"] = dict(**PLOTLY_LAYOUT["xaxis"], title="Settled bets (chronological)")
    layout["yaxis"] = dict(**PLOTLY_LAYOUT["yaxis"], tickprefix=symbol, zeroline=True)
    fig.update_layout(**layout)
    return fig


def _bet_label(bet) -> str:
    return f"{bet.date.isoformat()} · {bet.sport} · {bet.details} ({bet.result})"


# ---------------------------------------------------------------------------
# Page
# ---------------------------------------------------------------------------
st.title("📊 Dashboard")

# --- Filter + sort controls ---
period_col, sort_col = st.columns([3, 1])
with period_col:
    period = st.radio(
        "Period",
        list(PERIODS),
        format_func=PERIODS.get,
        horizontal=True,
        key="db_period",
    )
with sort_col:
    sort = st.selectbox(
        "Sort by",
        list(SORT_CRITERIA),
        format_func=SORT_CRITERIA.get,
        key="db_sort",
    )

custom_range = None
if period == "custom":
    today = current_day(tz=settings.tz)
    d1, d2, _ = st.columns([1, 1, 2])
    with d1:
        start = st.date_input("Start date", value=today - timedelta(days=30), key="db_start")
    with d2:
        end = st.date_input("End date", value=today, key="db_end")
    if not start or not end:
        st.warning("Please select both start and end dates.")
    custom_range = (start, end)

view = session.view(period=period, custom_range=custom_range, sort=sort)
stats = view.stats

# --- Stats tiles ---
s1, s2, s3, s4 = st.columns(4)
with s1:
    st.metric("Net Profit", format_money(stats["net_profit"], symbol))
with s2:
    st.metric("Turnover", format_money(stats["turnover"], symbol))
with s3:
    st.metric("ROI", format_pct(stats["roi"]))
with s4:
    st.metric("Accuracy", format_pct(stats["accuracy"]))

c1, c2, c3, c4, c5 = st.columns(5)
with c1:
    st.metric("Total Bets", stats["total_bets"])
with c2:
    st.metric("Won", stats["won"])
with c3:
    st.metric("Lost", stats["lost"])
with c4:
    st.metric("Pending", stats["pending"])
with c5:
    st.metric("Avg Stake", format_money(stats["avg_stake"], symbol))

# --- Chart ---
if view.series:
    st.plotly_chart(
        _build_profit_chart(view.series),
        use_container_width=True,
        config={"displayModeBar": False},
    )
else:
    st.caption("No settled bets in this period yet.")

st.markdown("---")

# --- Bet list ---
st.subheader("Bet History")

if not view.ordered:
    st.html(
        """
        <div style="
            background:#1a1d23; border:1px solid #2d3139;
            border-radius:6px; padding:20px; text-align:center;
            color:#6b7280; font-size:0.85rem;
        ">No bets found for this period.</div>
        """
    )
else:
    rows = []
    for bet in view.ordered:
        rows.append({
            "Date": bet.date.isoformat(),
            "Sport": bet.sport,
            "Details": bet.details,
            "Stake": format_money(bet.stake, symbol),
            "Odds": format_odds(bet.odds),
            "Result": bet.result,
            "P/L": format_signed_money(profit_loss(bet), symbol),
            "Notes": bet.notes,
        })
    df = pd.DataFrame(rows)
    st.dataframe(
        df.style.map(
            lambda value: f"color: {RESULT_COLORS.get(value, '#e5e7eb')}", subset=["Result"]
        ),
        use_container_width=True,
        hide_index=True,
        column_config={
            "Date":    st.column_config.TextColumn("Date", width=95),
            "Sport":   st.column_config.TextColumn("Sport", width=90),
            "Details": st.column_config.TextColumn("Details", width=240),
            "Stake":   st.column_config.TextColumn("Stake", width=90),
            "Odds":    st.column_config.TextColumn("Odds", width=60),
            "Result":  st.column_config.TextColumn("Result", width=75),
            "P/L":     st.column_config.TextColumn("P/L", width=90),
            "Notes":   st.column_config.TextColumn("Notes", width=160),
        },
    )

    net = stats["net_profit"]
    st.html(
        f"""
        <div style="
            background:#1a1d23; border:1px solid #2d3139;
            border-radius:6px; padding:10px 16px; margin-top:6px;
            display:flex; gap:24px; font-size:0.8rem;
        ">
            <span style="color:#6b7280;">
                Showing <strong style="color:#e5e7eb;">{len(view.ordered)}</strong> bets
            </span>
            <span style="color:#6b7280;">
                Net P&amp;L: <strong style="color:{profit_color(net)};">{format_money(net, symbol)}</strong>
            </span>
        </div>
        """
    )

    # --- Edit / delete ---
    with st.expander("Edit or delete a bet"):
        by_id = {bet.id: bet for bet in view.ordered}
        selected_id = st.selectbox(
            "Bet", list(by_id), format_func=lambda i: _bet_label(by_id[i]), key="db_selected",
        )
        selected = by_id[selected_id]

        with st.form(f"edit_{selected_id}"):
            e1, e2 = st.columns(2)
            with e1:
                edit_date = st.date_input("Date", value=selected.date)
            with e2:
                edit_sport = st.text_input("Sport", value=selected.sport)
            edit_details = st.text_input("Details", value=selected.details)
            e3, e4, e5 = st.columns(3)
            with e3:
                edit_stake = st.number_input("Stake", value=float(selected.stake), min_value=0.0, step=10.0)
            with e4:
                edit_odds = st.number_input("Odds", value=float(selected.odds), min_value=0.0, step=0.05, format="%.2f")
            with e5:
                edit_result = st.selectbox("Result", RESULTS, index=RESULTS.index(selected.result))
            edit_notes = st.text_area("Notes", value=selected.notes)
            if st.form_submit_button("Save Changes", type="primary"):
                _notify(session.edit_bet(selected_id, {
                    "date": edit_date,
                    "sport": edit_sport,
                    "details": edit_details,
                    "stake": edit_stake,
                    "odds": edit_odds,
                    "result": edit_result,
                    "notes": edit_notes,
                }))

        confirm_delete = st.checkbox("Are you sure you want to delete this bet?", key=f"confirm_{selected_id}")
        if st.button("Delete Bet", disabled=not confirm_delete, key=f"delete_{selected_id}"):
            outcome = session.delete_bet(selected_id)
            _notify(outcome)
            if outcome.ok:
                st.rerun()

st.markdown("---")

# --- Import / export ---
imp_col, exp_col = st.columns(2)

with exp_col:
    st.subheader("Export")
    if session.snapshot():
        st.download_button(
            "Download Excel",
            data=session.export_workbook(),
            file_name=EXPORT_FILENAME,
            mime=XLSX_MIME,
            use_container_width=True,
        )
    else:
        st.caption("Nothing to export yet.")

with imp_col:
    st.subheader("Import")
    upload = st.file_uploader(
        "Excel or CSV with columns: date, sport, details, stake, odds, result, notes",
        type=["xlsx", "xls", "csv"],
        key="db_import",
    )
    if upload is not None:
        upload_key = f"{upload.name}:{upload.size}"
        if st.session_state.get("import_key") != upload_key:
            st.session_state["import_key"] = upload_key
            st.session_state["import_prepared"] = session.prepare_import(upload.getvalue(), upload.name)
            st.session_state["import_done"] = False

        notice, prepared = st.session_state["import_prepared"]
        if st.session_state.get("import_done"):
            st.caption("File already imported. Choose another file to import more.")
        elif not notice.ok:
            _notify(notice)
        else:
            st.info(notice.message)
            for reason in notice.reasons[:20]:
                st.caption(f"• {reason}")
            if st.button("Confirm Import", type="primary", key="db_import_confirm"):
                with st.spinner("Importing..."):
                    outcome = session.commit_import(prepared)
                _notify(outcome)
                st.session_state["import_done"] = outcome.ok
