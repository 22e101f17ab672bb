import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
import atexit
import threading
from collections import deque
from datetime import date, timedelta

import pandas as pd
import plotly.express as px
import streamlit as st
from dotenv import load_dotenv

from spendtracker.analytics import DateFilter
from spendtracker.config import Settings
from spendtracker.domain import KNOWN_CATEGORIES, PERIODS, Budget, ExpenseInput, format_date, format_money, from_timestamp
from spendtracker.errors import SpendTrackerError
from spendtracker.events import ALL_EVENTS
from spendtracker.logging_setup import configure_logging
from spendtracker.services import StaticConfirmation, build_service
from spendtracker.store import parse_record_date

CATEGORY_COLORS = {
    "food": "#FF6384",
    "transport": "#36A2EB",
    "shopping": "#FFCE56",
    "bills": "#4BC0C0",
    "entertainment": "#9966FF",
    "other": "#FF9F40",
}
FILTERS = {
    "All Time": "all",
    "Today": "today",
    "Last 7 Days": "week",
    "Last 30 Days": "month",
    "Custom": "custom",
}


class Runtime:
    """Event loop thread plus the service, shared by every rerun of the script."""

    def __init__(self):
        load_dotenv(override=False)
        configure_logging()
        self.settings = Settings.from_env()
        self.activity = deque(maxlen=50)
        self.confirmation = StaticConfirmation(False)
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self.loop.run_forever, name="spendtracker-loop", daemon=True)
        self.thread.start()
        self.service = self.run(self._start())
        self.service.bus.subscribe_all(self._record_event)
        atexit.register(self.close)

    async def _start(self):
        service = build_service(self.settings, confirmation=self.confirmation)
        await service.start()
        return service

    def run(self, coro):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result()

    def _record_event(self, event):
        self.activity.appendleft({"time": event.ts[11:19], "event": event.name, **{
            k: getattr(v, "id", None) or getattr(v, "message", None) or v for k, v in event.payload.items()
        }})

    def close(self):
        if self.loop.is_running():
            self.run(self.service.aclose())
            self.loop.call_soon_threadsafe(self.loop.stop)


@st.cache_resource
def get_runtime() -> Runtime:
    return Runtime()


def show_outcome(outcome, success: str, cancelled: str, failure: str):
    if outcome.is_ok():
        st.success(success)
    elif outcome.is_cancelled():
        st.info(cancelled)
    else:
        st.error(f"{failure} ({outcome.error})")


def records_frame(records) -> pd.DataFrame:
    rows = [{
        "id": r.id,
        "date": r.date,
        "description": r.description,
        "category": r.category,
        "amount": r.amount,
        "recorded": from_timestamp(r.timestamp),
    } for r in records]
    return pd.DataFrame(rows, columns=["id", "date", "description", "category", "amount", "recorded"])


st.set_page_config(page_title="Spend Tracker", layout="wide")
runtime = get_runtime()
service = runtime.service
money = lambda v: format_money(v, runtime.settings.currency_symbol)
category_ids = [cid for cid, _ in KNOWN_CATEGORIES]

menu = st.sidebar.radio("Menu", ["🧾 Expenses", "💰 Budget", "📊 Analytics", "📜 Activity"])

if menu == "🧾 Expenses":
    st.title("🧾 Expenses")
    editing = st.selectbox(
        "Edit an existing expense",
        options=[None] + [r.id for r in service.records],
        format_func=lambda rid: "New expense" if rid is None else f"{service.store.get(rid).description} ({rid})",
    )
    current = service.store.get(editing) if editing else None

    c1, c2, c3 = st.columns([3, 1, 1])
    with c1:
        description = st.text_input("Description", value=current.description if current else "", max_chars=100)
    with c2:
        amount = st.text_input("Amount", value=f"{current.amount:.2f}" if current else "")
    with c3:
        category = st.selectbox(
            "Category", category_ids,
            index=category_ids.index(current.category) if current and current.category in category_ids else 0,
        )
    parsed = parse_record_date(current.date) if current else None
    day = st.date_input("Date", value=parsed.date() if parsed else date.today(), max_value=date.today())
    data = ExpenseInput(description=description, amount=amount, category=category, date=format_date(day))

    warning = None
    if description.strip() and amount.strip():
        try:
            warning = service.preview(data, editing)
        except SpendTrackerError as e:
            st.caption(f"⚠️ {e}")
    acknowledged = True
    if warning is not None:
        st.warning(warning.message)
        acknowledged = st.checkbox("Update anyway" if editing else "Add anyway")

    if st.button("Save changes" if editing else "Add expense", type="primary"):
        runtime.confirmation.answer = acknowledged
        if editing:
            outcome = runtime.run(service.update_expense(editing, data))
            show_outcome(outcome, "Expense updated", "Expense not updated", "Failed to update expense")
        else:
            outcome = runtime.run(service.add_expense(data))
            show_outcome(outcome, "Expense added", "Expense not added", "Failed to add expense")

    st.subheader("All expenses")
    df = records_frame(service.records)
    if df.empty:
        st.info("No expenses yet. Add your first one above.")
    else:
        disp = df.sort_values("recorded", ascending=False).copy()
        disp["amount"] = disp["amount"].map(money)
        disp["category"] = disp["category"].str.capitalize()
        st.dataframe(disp.drop(columns=["recorded"]), use_container_width=True, hide_index=True)
        d1, d2 = st.columns(2)
        with d1:
            to_delete = st.selectbox("Delete expense", options=list(df["id"]))
            if st.button("🗑 Delete"):
                outcome = runtime.run(service.delete_expense(to_delete))
                show_outcome(outcome, "Expense deleted", "", "Failed to delete expense")
        with d2:
            confirm_clear = st.checkbox("I understand this removes every expense")
            if st.button("Clear all", disabled=not confirm_clear):
                outcome = runtime.run(service.clear_expenses())
                show_outcome(outcome, "All expenses cleared", "", "Failed to clear expenses")
        st.download_button("⬇ Download CSV", df.to_csv(index=False), file_name="expenses.csv", mime="text/csv")

elif menu == "💰 Budget":
    st.title("💰 Budget")
    budget = service.budget
    status = service.budget_status()

    k1, k2, k3 = st.columns(3)
    k1.metric("Spent", money(status.total))
    k2.metric("Remaining", money(status.remaining))
    k3.metric("Status", "Over budget" if status.is_over_budget else "On track")
    if budget:
        st.progress(min(1.0, status.total / budget.amount))
        if status.category_totals:
            rows = [{
                "Category": cat.capitalize(),
                "Spent": spent,
                "Limit": budget.limit_for(cat),
            } for cat, spent in sorted(status.category_totals.items())]
            fig = px.bar(pd.DataFrame(rows), x="Category", y="Spent", title=f"Spending this {budget.period} period",
                         template="plotly_dark", color="Category",
                         color_discrete_map={c.capitalize(): col for c, col in CATEGORY_COLORS.items()})
            st.plotly_chart(fig, use_container_width=True)

    st.subheader("Budget settings")
    cap = st.number_input("Budget amount", min_value=0.0, value=float(budget.amount) if budget else 0.0, step=100.0)
    period = st.radio("Budget period", PERIODS, horizontal=True,
                      index=PERIODS.index(budget.period) if budget else PERIODS.index("monthly"))
    limits = {}
    if st.toggle("Category limits", value=bool(budget and budget.category_limits)):
        for cid, name in KNOWN_CATEGORIES:
            existing = budget.limit_for(cid) if budget else None
            value = st.number_input(f"{name} limit", min_value=0.0, value=float(existing or 0.0), step=50.0)
            if value > 0:
                limits[cid] = value
    if st.button("Save budget", type="primary"):
        outcome = runtime.run(service.set_budget(Budget(amount=cap, period=period, category_limits=limits)))
        show_outcome(outcome, "Budget settings saved successfully", "", "Failed to save budget settings")

elif menu == "📊 Analytics":
    st.title("📊 Analytics")
    if not service.records:
        st.info("No expenses to analyze yet. Add some expenses to see analytics.")
    else:
        choice = st.radio("Period", list(FILTERS), horizontal=True)
        kind = FILTERS[choice]
        start = end = None
        if kind == "custom":
            picked = st.date_input("Date range", value=(date.today() - timedelta(days=6), date.today()),
                                   max_value=date.today())
            if len(picked) == 2:
                start, end = picked
        report = service.report(DateFilter(kind, start, end))

        st.metric("Total spent", money(report.total))
        st.info(f"{report.tip.icon} {report.tip.message}")

        series = pd.DataFrame({"day": report.series.labels, "amount": report.series.values})
        fig_bar = px.bar(series, x="day", y="amount", title="Daily spending", template="plotly_dark")
        st.plotly_chart(fig_bar, use_container_width=True)

        if report.breakdown:
            shares = pd.DataFrame([{
                "Category": c.name, "Amount": c.amount, "Share": f"{c.percentage}%", "id": c.category,
            } for c in report.breakdown])
            fig_pie = px.pie(shares, values="Amount", names="Category", title="Category breakdown",
                             color="id", color_discrete_map=CATEGORY_COLORS)
            st.plotly_chart(fig_pie, use_container_width=True)
            st.table(shares.drop(columns=["id"]).assign(Amount=shares["Amount"].map(money)))

elif menu == "📜 Activity":
    st.title("📜 Activity")
    if runtime.activity:
        st.dataframe(pd.DataFrame(list(runtime.activity)), use_container_width=True, hide_index=True)
    else:
        st.caption(f"No activity yet. Tracked events: {', '.join(ALL_EVENTS)}")
    st.caption(f"Save state: {service.synchronizer.state.value}")
