import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
from datetime import timedelta

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
import streamlit as st

from ledger.api import HttpApi
from ledger.categories import IncomeCategory, budget_categories, category_style
from ledger.config import configure_logging, load_settings
from ledger.currency import SUPPORTED_CURRENCIES, CurrencyFormatter
from ledger.domain import PAYMENT_METHODS, BudgetPeriod, TransactionType
from ledger.events import BUDGET_ALERT, BUDGET_MISSING
from ledger.errors import DuplicateCategoryError, NotFoundError
from ledger.filters import DATE_RANGE_PRESETS, TransactionFilters, date_range_for
from ledger.memory import load_seed
from ledger.reports import budget_report, income_expense_summary, last_months, monthly_totals, spending_by_category
from ledger.repository import LedgerRepository

st.set_page_config(page_title="Budget Ledger", layout="wide")

settings = load_settings()
configure_logging(settings)


def build_repository() -> LedgerRepository:
    if settings.api_url:
        api = HttpApi(settings.api_url, lambda: settings.api_token, timeout=settings.timeout)
    else:
        api = load_seed(settings.seed_path)
    repo = LedgerRepository(api, refresh_interval=settings.refresh_interval)
    repo.bus.subscribe(BUDGET_ALERT, lambda e, p: st.session_state.notices.append(("warning", e.payload["status"])))
    repo.bus.subscribe(BUDGET_MISSING, lambda e, p: st.session_state.notices.append(("missing", p["category"])))
    return repo


def run(coro):
    async def _run():
        try:
            return await coro
        finally:
            # aiohttp sessions are bound to the loop that made them
            api = st.session_state.repo.transaction_store.api
            if isinstance(api, HttpApi):
                await api.close()

    return asyncio.run(_run())


if "notices" not in st.session_state:
    st.session_state.notices = []
if "repo" not in st.session_state:
    st.session_state.repo = build_repository()
    run(st.session_state.repo.load())

repo: LedgerRepository = st.session_state.repo

currency_codes = [c.code for c in SUPPORTED_CURRENCIES]
code = st.sidebar.selectbox("Currency", currency_codes, index=currency_codes.index(settings.currency.code))
fmt = CurrencyFormatter(next(c for c in SUPPORTED_CURRENCIES if c.code == code))

if st.sidebar.button("🔄 Refresh"):
    run(repo.load())

for kind, item in st.session_state.notices:
    if kind == "missing":
        st.sidebar.info(f"No budget exists for {item.value}. Create one to track this spending.")
    else:
        st.sidebar.warning(f"{item.budget.category.value}: {item.utilization_percentage:.1f}% of budget used")
st.session_state.notices = []

menu = st.sidebar.radio("Menu", ["💰 Budgets", "🧾 Transactions", "📑 Reports"])


def show_error(error):
    if isinstance(error, DuplicateCategoryError):
        st.warning(f"{error}. Update the existing budget instead.")
    elif isinstance(error, NotFoundError):
        st.info("That record was already removed.")
    elif hasattr(error, "errors"):
        for field, message in error.errors.items():
            st.error(f"{field}: {message}")
    else:
        st.error(str(error))


def show_result(result, success: str):
    result.fold(show_error, lambda _: st.success(success))


if menu == "💰 Budgets":
    st.title("💰 Budgets")
    statuses = repo.budget_statuses()
    if statuses:
        for s in statuses:
            style = category_style(s.budget.category)
            c1, c2 = st.columns([3, 1])
            with c1:
                st.metric(
                    s.budget.category.value,
                    f"{fmt(s.spent)} / {fmt(s.budget.amount)}",
                    f"{fmt(s.remaining_amount)} remaining",
                    delta_color="normal" if s.remaining_amount >= 0 else "inverse",
                )
                st.progress(float(s.display_percentage()) / 100)
                st.caption(
                    f"{s.budget.start_date:%b %d, %Y} - {s.budget.end_date:%b %d, %Y} · "
                    f"{s.utilization_percentage:.1f}%"
                )
            with c2:
                st.markdown(f"<span style='color:{style.color}'>●</span> {s.budget.period.value}", unsafe_allow_html=True)
                if st.button("Delete", key=f"del-{s.budget.id}"):
                    show_result(run(repo.remove_budget(s.budget.id)), "Budget deleted")
                    st.rerun()
    else:
        st.info("No budgets defined")

    with st.form("new-budget"):
        st.subheader("New budget")
        category = st.selectbox("Category", [c.value for c in budget_categories()])
        amount = st.number_input("Amount", min_value=0.0, step=100.0)
        period = st.selectbox("Period", [p.value for p in BudgetPeriod], index=1)
        today = pd.Timestamp.today().date()
        start = st.date_input("Start", value=today)
        end = st.date_input("End", value=today + timedelta(days=30))
        if st.form_submit_button("Create"):
            show_result(
                run(repo.add_budget({
                    "category": category, "amount": amount, "period": period,
                    "start_date": start, "end_date": end,
                })),
                "Budget created",
            )

elif menu == "🧾 Transactions":
    st.title("🧾 Transactions")

    c1, c2, c3 = st.columns(3)
    with c1:
        preset = st.selectbox("Date range", DATE_RANGE_PRESETS[:-1])
    with c2:
        tx_type = st.selectbox("Type", ["All"] + [t.value for t in TransactionType])
    with c3:
        search = st.text_input("Search")
    start, end = date_range_for(preset, repo.clock())
    filters = TransactionFilters(
        start_date=start,
        end_date=end,
        type=None if tx_type == "All" else TransactionType(tx_type),
        search=search or None,
    )
    rows = [
        {
            "date": t.date,
            "description": t.description,
            "category": t.category.value,
            "type": t.type.value,
            "amount": fmt(t.amount),
            "budget": "linked" if t.linked_budget_id else "",
            "id": t.id,
        }
        for t in repo.transactions if filters.matches(t)
    ]
    df = pd.DataFrame(rows)
    if not df.empty:
        df["date"] = pd.to_datetime(df["date"]).dt.strftime("%Y-%m-%d")
        st.dataframe(df.drop(columns=["id"]), use_container_width=True)
        to_delete = st.selectbox("Delete transaction", [""] + list(df["id"]))
        if to_delete and st.button("Delete selected"):
            show_result(run(repo.remove_transaction(to_delete)), "Transaction deleted")
            st.rerun()
    else:
        st.info("No transactions in this range")

    new_type = st.radio("New transaction type", [t.value for t in TransactionType], horizontal=True)
    with st.form("new-transaction"):
        if new_type == TransactionType.EXPENSE.value:
            options = [c.value for c in budget_categories()]
        else:
            options = [c.value for c in IncomeCategory]
        category = st.selectbox("Category", options)
        description = st.text_input("Description")
        amount = st.number_input("Amount", min_value=0.0, step=10.0)
        when = st.date_input("Date", value=pd.Timestamp.today().date())
        method = st.selectbox("Payment method", [""] + list(PAYMENT_METHODS))
        recurring = st.checkbox("Recurring")
        if st.form_submit_button("Add"):
            show_result(
                run(repo.add_transaction({
                    "type": new_type, "category": category, "description": description,
                    "amount": amount, "date": when, "payment_method": method or None,
                    "is_recurring": recurring,
                })),
                f"{new_type.title()} added successfully!",
            )

elif menu == "📑 Reports":
    st.title("📑 Reports")
    now = repo.clock()
    preset = st.selectbox("Period", DATE_RANGE_PRESETS[:-1], index=3)
    start, end = date_range_for(preset, now)
    summary = income_expense_summary(repo.transactions, start, end)

    k1, k2, k3 = st.columns(3)
    k1.metric("Total Income", fmt(summary.income))
    k2.metric("Total Expenses", fmt(summary.expense))
    k3.metric("Net Savings", fmt(summary.net_savings))

    in_range = [t for t in repo.transactions if start <= t.date <= end]
    slices = spending_by_category(in_range)
    if slices:
        df_cat = pd.DataFrame([{"category": name, "amount": float(total)} for name, total in slices])
        fig_cat = px.pie(df_cat, names="category", values="amount", title="Spending by category", template="plotly_dark")
        st.plotly_chart(fig_cat, use_container_width=True)

    months = last_months(now)
    totals = run(monthly_totals(repo.transactions, months))
    fig_ts = go.Figure()
    fig_ts.add_trace(go.Scatter(x=months, y=[float(totals[m].income) for m in months], mode="lines+markers", name="Income"))
    fig_ts.add_trace(go.Scatter(x=months, y=[float(totals[m].expense) for m in months], mode="lines+markers", name="Expense"))
    fig_ts.update_layout(template="plotly_dark", margin=dict(t=30, b=10, l=10, r=10))
    st.plotly_chart(fig_ts, use_container_width=True)

    st.subheader("Budget report")
    st.text("\n".join(budget_report(repo.budget_statuses(), fmt)))
